"""Tests for QueueItem."""
import pytest

from job_queue.item import QueueItem, describe_result
from models.schemas import QueueStatus, QueueType


class TestFactories:
    def test_work_queue(self):
        item = QueueItem.create_work_queue({"nama": "CV Maju"}, "http://caller/cb")
        assert item.type == QueueType.WORK
        assert item.status == QueueStatus.NEW
        assert item.callback == "http://caller/cb"
        assert item.id is None
        assert not item.is_callback

    def test_callback_queue(self):
        item = QueueItem.create_callback_queue({"id": "x"}, "http://caller/cb")
        assert item.is_callback

    def test_custom_type(self):
        item = QueueItem.create("lookup", {}, "", info="NPWP")
        assert item.type == "lookup"
        assert item.callback is None
        assert item.info == "NPWP"


class TestLifecycle:
    def test_start_stamps_time(self):
        item = QueueItem.create_work_queue({})
        item.start()
        assert item.status == QueueStatus.PROCESSING
        assert item.time is not None
        assert item.started_at is not None
        assert not item.finished()

    def test_done(self):
        item = QueueItem.create_work_queue({})
        item.start()
        item.done({"saved": True})
        assert item.status == QueueStatus.DONE
        assert item.result == {"saved": True}
        assert item.finished()

    def test_error(self):
        item = QueueItem.create_work_queue({})
        err = RuntimeError("boom")
        item.error(err)
        assert item.status == QueueStatus.ERROR
        assert item.result is err
        assert item.finished()

    def test_skip_only_before_start(self):
        item = QueueItem.create_work_queue({})
        item.skip()
        assert item.status == QueueStatus.SKIPPED
        assert item.finished()

        started = QueueItem.create_work_queue({})
        started.start()
        started.skip()
        assert started.status == QueueStatus.PROCESSING

    def test_set_id_once(self):
        item = QueueItem.create_work_queue({})
        item.set_id("aaaa0001")
        item.set_id("aaaa0001")
        with pytest.raises(ValueError):
            item.set_id("bbbb0002")
        assert item.id == "aaaa0001"

    def test_status_accepts_plain_value(self):
        item = QueueItem.create_work_queue({})
        item.set_status("timeout")
        assert item.status == QueueStatus.TIMED_OUT


class TestPayloadAccess:
    def test_mapped_data_without_maps(self):
        item = QueueItem.create_work_queue({"nama": "CV Maju"})
        assert item.get_mapped_data("nama") == "CV Maju"

    def test_mapped_data_through_maps(self):
        item = QueueItem.create_work_queue(
            {"first": "Ani", "last": "Wijaya"},
            maps={"contact": {"name": "CONCAT: |first|last"}},
        )
        assert item.get_map("contact.name") == "CONCAT: |first|last"
        assert item.get_mapped_data("contact.name") == "Ani Wijaya"

    def test_unmapped_name(self):
        item = QueueItem.create_work_queue({"nama": "x"}, maps={"other": "nama"})
        assert item.get_mapped_data("nama") is None


class TestReporting:
    def test_get_info(self):
        item = QueueItem.create_work_queue({}, info="CV Maju", id="abcd1234")
        assert item.get_info() == "work:abcd1234 (CV Maju)"

    def test_get_info_for_callback_uses_url(self):
        item = QueueItem.create_callback_queue({}, "http://caller/cb", id="abcd1234")
        assert item.get_info() == "callback:abcd1234 (http://caller/cb)"

    def test_get_info_without_label(self):
        item = QueueItem.create_work_queue({}, id="abcd1234")
        assert item.get_info() == "work:abcd1234"

    def test_to_log(self):
        item = QueueItem.create_work_queue({}, info="CV Maju", id="abcd1234")
        entry = item.to_log().to_report()
        assert entry == {
            "id": "abcd1234",
            "type": "work",
            "name": "work:abcd1234 (CV Maju)",
            "status": "new",
        }

        item.start()
        item.error(ValueError("invalid NPWP"))
        entry = item.to_log().to_report()
        assert entry["status"] == "error"
        assert entry["result"] == "ValueError: invalid NPWP"
        assert "time" in entry
        assert isinstance(item.to_log(raw=True).result, ValueError)

    def test_to_saved(self):
        item = QueueItem.create_work_queue({"nama": "x"}, "http://cb", id="abcd1234")
        saved = item.to_saved()
        assert saved.model_dump() == {
            "type": "work", "id": "abcd1234", "data": {"nama": "x"}, "callback": "http://cb",
        }

    def test_describe_result(self):
        assert describe_result("ok") == "ok"
        assert describe_result(KeyError()) == "KeyError"
        assert describe_result([1, 2]) == "[1, 2]"
