import json

from wanderer.logger import Logger


def test_log_line_format_and_file(tmp_path, capsys):
    path = tmp_path / "walk.log"
    logger = Logger(str(path))
    logger.log("Walk started", {"title": "Evening loop", "distance": 2500.0})
    logger.close()

    printed = capsys.readouterr().out.strip()
    assert printed.endswith('Walk started | {"title": "Evening loop", "distance": 2500.0}')

    lines = path.read_text().splitlines()
    assert any(line.startswith("Wanderer Log - ") for line in lines)
    entry = lines[-1]
    message, data = entry.split(" | ", 1)
    assert message.startswith("[") and message.endswith("] Walk started")
    assert json.loads(data) == {"title": "Evening loop", "distance": 2500.0}


def test_callback_and_silent_mode(capsys):
    seen = []
    logger = Logger(callback=lambda message, data: seen.append((message, data)), echo=False)
    logger.log("Session reset")
    assert seen == [("Session reset", None)]
    assert capsys.readouterr().out == ""
