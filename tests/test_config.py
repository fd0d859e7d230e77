import pytest

from slamkit.config import Config


def _write(tmp_path, text):
    path = tmp_path / "default.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_load_with_directive_header(tmp_path):
    path = _write(tmp_path, "%YAML:1.0\ndataset_dir: /data/kitti\nnum_features: 200\n")
    config = Config.load(path)
    assert config.get("dataset_dir") == "/data/kitti"
    assert config.get("num_features") == 200


def test_load_plain_yaml(tmp_path):
    path = _write(tmp_path, "num_features_init: 50\nscale: 0.5\n")
    config = Config.load(path)
    assert config.get("num_features_init") == 50
    assert config.get("scale") == 0.5
    assert "scale" in config


def test_missing_key_raises(tmp_path):
    config = Config.load(_write(tmp_path, "a: 1\n"))
    with pytest.raises(KeyError):
        config.get("b")


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        Config.load(tmp_path / "absent.yaml")


def test_non_mapping_file_raises(tmp_path):
    with pytest.raises(ValueError):
        Config.load(_write(tmp_path, "- 1\n- 2\n"))


def test_empty_file_has_no_keys(tmp_path):
    config = Config.load(_write(tmp_path, ""))
    assert "anything" not in config