import json
import os
import re

import pytest

from site_auditor import audits
from site_auditor.audits import COMPLETED, FAILED, IN_PROGRESS, AuditManager

ID_PATTERN = re.compile(r"^audit-\d{4}-\d{2}-\d{2}-\d{2}-\d{2}-\d{2}(-\d+)?$")


@pytest.fixture
def manager(tmp_path):
    return AuditManager("example.com", str(tmp_path / "example_com"))


def test_new_audit_layout(manager):
    paths = manager.create_or_resume()
    assert ID_PATTERN.match(paths.audit_id)
    assert not paths.resumed
    assert os.path.isdir(paths.audit_dir)
    assert paths.state_file == os.path.join(paths.audit_dir, "crawl-state.json")
    assert paths.page_data_dir == os.path.join(paths.audit_dir, "page-data")
    assert paths.log_file == os.path.join(paths.audit_dir, "audit.log")
    assert paths.failed_log_file == os.path.join(paths.audit_dir, "failed-urls.log")

    with open(manager.index_path, encoding="utf-8") as f:
        index = json.load(f)
    assert index["domain"] == "example.com"
    assert index["totalAudits"] == 1
    assert index["lastAuditId"] == paths.audit_id
    assert index["audits"][0]["status"] == IN_PROGRESS


def test_in_progress_audit_is_resumed(manager, tmp_path):
    first = manager.create_or_resume()
    again = manager.create_or_resume()
    assert again.audit_id == first.audit_id
    assert again.resumed

    reopened = AuditManager("example.com", manager.domain_dir)
    assert reopened.create_or_resume().audit_id == first.audit_id
    assert len(reopened.list_audits()) == 1


@pytest.mark.parametrize("finish", ["complete", "fail"])
def test_finished_audit_is_not_resumed(manager, finish):
    first = manager.create_or_resume()
    if finish == "complete":
        assert manager.complete(first.audit_id, pages_analyzed=12, links_checked=4)
    else:
        assert manager.fail(first.audit_id, RuntimeError("network down"))

    second = manager.create_or_resume()
    assert second.audit_id != first.audit_id
    assert ID_PATTERN.match(second.audit_id)
    assert not second.resumed


def test_complete_and_fail_record_details(manager):
    done = manager.create_or_resume()
    manager.complete(done.audit_id, pages_analyzed=12, links_checked=4)
    record = manager.get_audit(done.audit_id)
    assert record["status"] == COMPLETED
    assert record["pagesAnalyzed"] == 12 and record["linksChecked"] == 4
    assert record["endTime"] is not None and record["duration"] >= 0

    broken = manager.create_or_resume()
    manager.fail(broken.audit_id, RuntimeError("network down"))
    record = manager.get_audit(broken.audit_id)
    assert record["status"] == FAILED
    assert record["error"] == "network down"


def test_force_new_supersedes_in_progress(manager):
    first = manager.create_or_resume()
    second = manager.create_or_resume(force_new=True)
    assert second.audit_id != first.audit_id
    assert manager.get_audit(first.audit_id)["status"] == FAILED
    assert [a["status"] for a in manager.list_audits()].count(IN_PROGRESS) == 1


def test_unknown_audit_ids_are_ignored(manager):
    assert manager.complete("audit-nope") is False
    assert manager.fail("audit-nope", "x") is False
    assert manager.delete_audit("audit-nope") is False
    assert manager.get_audit("audit-nope") is None


def make_history(manager, n):
    ids = []
    for _ in range(n):
        paths = manager.create_or_resume()
        manager.complete(paths.audit_id, pages_analyzed=10, links_checked=2)
        ids.append(paths.audit_id)
    return ids


def test_list_is_newest_first(manager):
    ids = make_history(manager, 3)
    assert [a["id"] for a in manager.list_audits()] == list(reversed(ids))


def test_cleanup_keeps_newest(manager):
    ids = make_history(manager, 5)
    result = manager.cleanup(keep_count=2)
    assert result == {"cleaned": 3, "kept": 2}
    assert [a["id"] for a in manager.list_audits()] == [ids[4], ids[3]]
    assert sorted(os.listdir(manager.audits_dir)) == sorted(ids[3:])
    assert manager.index["lastAuditId"] == ids[4]

    with open(manager.index_path, encoding="utf-8") as f:
        assert json.load(f)["totalAudits"] == 2


def test_cleanup_with_few_audits_removes_nothing(manager):
    make_history(manager, 2)
    assert manager.cleanup(keep_count=10) == {"cleaned": 0, "kept": 2}


def test_cleanup_survives_undeletable_directory(manager, monkeypatch):
    ids = make_history(manager, 4)
    real_rmtree = audits.shutil.rmtree

    def flaky_rmtree(path, *args, **kwargs):
        if path.endswith(ids[0]):
            raise PermissionError("locked")
        return real_rmtree(path, *args, **kwargs)

    monkeypatch.setattr(audits.shutil, "rmtree", flaky_rmtree)
    result = manager.cleanup(keep_count=1)

    assert result == {"cleaned": 3, "kept": 1}
    assert [a["id"] for a in manager.list_audits()] == [ids[3]]
    assert os.path.isdir(os.path.join(manager.audits_dir, ids[0]))
    assert not os.path.exists(os.path.join(manager.audits_dir, ids[1]))


def test_delete_audit(manager):
    ids = make_history(manager, 2)
    assert manager.delete_audit(ids[1])
    assert [a["id"] for a in manager.list_audits()] == [ids[0]]
    assert manager.index["lastAuditId"] == ids[0]
    assert not os.path.exists(os.path.join(manager.audits_dir, ids[1]))


def test_corrupt_index_is_replaced(tmp_path):
    domain_dir = tmp_path / "example_com"
    domain_dir.mkdir()
    (domain_dir / "audit-history.json").write_text("{broken", encoding="utf-8")
    manager = AuditManager("example.com", str(domain_dir))
    assert manager.list_audits() == []
    paths = manager.create_or_resume()
    assert manager.get_audit(paths.audit_id)["status"] == IN_PROGRESS


def test_audit_stats(manager):
    make_history(manager, 2)
    broken = manager.create_or_resume()
    manager.fail(broken.audit_id, "boom")
    manager.create_or_resume()

    stats = manager.get_audit_stats()
    assert stats["total"] == 4
    assert stats["completed"] == 2
    assert stats["failed"] == 1
    assert stats["inProgress"] == 1
    assert stats["averagePages"] == 10
    assert stats["averageDuration"] is not None
