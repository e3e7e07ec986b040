import json

from graphlower.utils.logger import get_logger, setup_logger


def _entries(path):
    return [json.loads(line) for line in path.read_text().splitlines() if line.strip()]


def test_setup_logger_reconfigures_shared_instance(tmp_path):
    before = get_logger()
    after = setup_logger("info", log_file=tmp_path / "run.log")

    assert after is before


def test_json_file_sink(tmp_path, capsys):
    log_file = tmp_path / "logs" / "run.jsonl"
    logger = setup_logger("debug", log_file=log_file, json_logging=True)

    logger.bind(model="tiny", stage="act").info("lowered")

    entries = _entries(log_file)
    assert entries[-1]["message"] == "lowered"
    assert entries[-1]["level"] == "INFO"
    assert entries[-1]["model"] == "tiny"
    assert entries[-1]["extra"] == {"stage": "act"}
    assert '"message": "lowered"' in capsys.readouterr().err


def test_level_filters_records(tmp_path):
    log_file = tmp_path / "run.jsonl"
    logger = setup_logger("warning", log_file=log_file, json_logging=True)

    logger.info("hidden")
    logger.warning("shown")

    assert [e["message"] for e in _entries(log_file)] == ["shown"]
