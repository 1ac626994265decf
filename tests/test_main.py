import pytest

yaml = pytest.importorskip("yaml")

import main
from utils.formatting import format_rect, format_time
from core.models import Rectangle


def test_format_time():
    assert format_time(3723) == "1h 2m 3s"
    assert format_time(125) == "2m 5s"
    assert format_time(9.7) == "9s"


def test_format_rect():
    assert format_rect(Rectangle(0, 0, 10, 5)) == "(0,0) - (10,5) [10x5]"


def test_main_reports_config_errors_with_exit_code(tmp_path):
    (tmp_path / "lights").mkdir()
    with (tmp_path / "config.yaml").open("w", encoding="utf-8") as fh:
        yaml.safe_dump({"depth": {"strategy": "bogus"}, "input": {"file_pattern": "*.tif"}}, fh)
    (tmp_path / "lights" / "a.tif").write_bytes(b"")
    assert main.main(["--project", str(tmp_path), "--no-faulthandler"]) == 1


def test_main_missing_input_dir(tmp_path):
    assert main.main(["--project", str(tmp_path), "--no-faulthandler"]) == 1


def test_main_unexpected_error_returns_exit_code(tmp_path, monkeypatch):
    def boom(project, cfg):
        raise RuntimeError("disk vanished")

    monkeypatch.setattr(main, "run_pipeline", boom)
    assert main.main(["--project", str(tmp_path), "--no-faulthandler"]) == 1
