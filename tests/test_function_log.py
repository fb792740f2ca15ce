from services import function_log


def test_logs_are_listed_newest_first(tmp_db):
    function_log.log_function_run("first", meta={"n": 1})
    function_log.log_function_run("second", level="error")

    logs = function_log.list_function_logs()

    assert [entry["message"] for entry in logs] == ["second", "first"]
    assert logs[0]["level"] == "error"
    assert logs[1]["meta"] == {"n": 1}
    assert logs[0]["timestamp"].endswith("Z")


def test_logging_failure_never_raises(tmp_db, monkeypatch):
    def broken_write(*_args, **_kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(function_log, "execute_write", broken_write)

    function_log.log_function_run("lost")
