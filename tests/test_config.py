import logging
import threading
from datetime import timedelta
from pathlib import Path

import pytest

from warden import config

TEST_URL = "https://signing-dev.repositories.cloud.sap"
TEST_ALLOWED_REGISTRIES = "test1,\ntest2,\ntest3"
TEST_PREDEFINED_USER_ALLOWED_REGISTRIES = "user1,\nuser2"

CONFIG_YAML = """\
notary:
  URL: "https://signing-dev.repositories.cloud.sap"
  allowedRegistries: |-
    test1,
    test2,
    test3
  predefinedUserAllowedRegistries: |-
    user1,
    user2
  timeout: 10s
admission:
  port: 9443
  strictMode: true
logging:
  level: debug
"""


@pytest.fixture
def config_dir(tmp_path):
    data_dir = tmp_path / "testData"
    data_dir.mkdir()
    (data_dir / "config.yaml").write_text(CONFIG_YAML, encoding="utf-8")
    return tmp_path


def test_load_from_absolute_path(config_dir):
    cfg = config.load(config_dir / "testData" / "config.yaml")
    assert cfg.notary.allowed_registries == TEST_ALLOWED_REGISTRIES
    assert cfg.notary.predefined_user_allowed_registries == TEST_PREDEFINED_USER_ALLOWED_REGISTRIES
    assert cfg.notary.url == TEST_URL


def test_load_from_relative_path(config_dir, monkeypatch):
    monkeypatch.chdir(config_dir)
    cfg = config.load(str(Path(".") / "testData" / "config.yaml"))
    assert cfg.notary.allowed_registries == TEST_ALLOWED_REGISTRIES
    assert cfg.notary.predefined_user_allowed_registries == TEST_PREDEFINED_USER_ALLOWED_REGISTRIES
    assert cfg.notary.url == TEST_URL


def test_load_missing_path_raises(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    with pytest.raises(OSError):
        config.load(str(Path("this") / "path" / "doesnot.exist"))


def test_load_empty_path_raises(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    with pytest.raises(OSError):
        config.load("")


def test_load_overrides_and_keeps_defaults(config_dir):
    cfg = config.load(config_dir / "testData" / "config.yaml")
    assert cfg.notary.timeout == timedelta(seconds=10)
    assert cfg.admission.port == 9443
    assert cfg.admission.strict_mode is True
    assert cfg.logging.level == "debug"
    assert cfg.logging.format == "text"
    assert cfg.admission.secret_name == "warden-admission-cert"
    assert cfg.operator.pod_reconciler_requeue_after == timedelta(minutes=60)


def test_empty_file_gives_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("", encoding="utf-8")
    assert config.load(path) == config.Config()


def test_defaults():
    cfg = config.Config()
    assert cfg.admission.timeout == timedelta(seconds=2)
    assert cfg.admission.service_name == "warden-admission"
    assert cfg.operator.metrics_bind_address == ":8080"
    assert cfg.operator.health_probe_bind_address == ":8081"
    assert cfg.notary.timeout == timedelta(seconds=30)


def test_invalid_duration_raises(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("admission:\n  timeout: soon\n", encoding="utf-8")
    with pytest.raises(ValueError):
        config.load(path)


def test_invalid_port_type_raises(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("admission:\n  port: [1, 2]\n", encoding="utf-8")
    with pytest.raises(ValueError):
        config.load(path)


def test_watch_missing_directory_raises(tmp_path):
    with pytest.raises(OSError):
        config.watch(tmp_path / "missing" / "config.yaml", logging.getLogger("test"), lambda code: None)


def test_watch_reports_change(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("logging:\n  level: info\n", encoding="utf-8")
    codes = []
    fired = threading.Event()

    def on_exit(code):
        codes.append(code)
        fired.set()

    observer = config.watch(path, logging.getLogger("test.watch"), on_exit)
    try:
        assert observer.is_alive() is True
        (tmp_path / "other.yaml").write_text("changed", encoding="utf-8")
        assert fired.wait(5) is True
    finally:
        observer.stop()
        observer.join(5)
    assert codes == [0]
    assert observer.is_alive() is False