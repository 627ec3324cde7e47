"""Tests for config file loading, priority and validation."""

import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import pytest

from tracelet import config
from tracelet.errors import ConfigError
from tracelet.exporter import ConsoleExporter, OTLPExporter
from tracelet.processors import BatchSpanProcessor, LoggingSpanProcessor, SimpleSpanProcessor
from tracelet.tracer import ALWAYS_OFF, TraceIdRatioBased

CLEAN_ENV = {k: v for k, v in os.environ.items() if not k.startswith("TRACELET_")}


def _write_toml(tmpdir, content, name="tracelet.toml"):
    path = Path(tmpdir) / name
    path.write_text(content)
    return str(path)


class TestConfigFileLoading(unittest.TestCase):
    """Test TOML config file loading."""

    def test_load_toml_config_basic(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write_toml(tmpdir, """
[tracing]
service_name = "checkout"
sampler = "traceidratio"
sampler_arg = 0.5

[exporter]
type = "none"

[batch]
max_queue_size = 100
""")
            loaded = config.load_toml_config(path)

        self.assertEqual(loaded["tracing"]["service_name"], "checkout")
        self.assertEqual(loaded["tracing"]["sampler_arg"], 0.5)
        self.assertEqual(loaded["exporter"]["type"], "none")
        self.assertEqual(loaded["batch"]["max_queue_size"], 100)

    def test_load_toml_config_missing_file(self):
        """Loading a missing file returns an empty dict."""
        self.assertEqual(config.load_toml_config("/nonexistent/file.toml"), {})

    def test_load_toml_config_invalid_toml(self):
        """Invalid TOML raises ConfigError."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write_toml(tmpdir, "invalid [toml content")
            with self.assertRaises(ConfigError):
                config.load_toml_config(path)

    def test_find_config_file_current_directory(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            _write_toml(tmpdir, "[tracing]\nservice_name = \"test\"")
            original_cwd = os.getcwd()
            try:
                os.chdir(tmpdir)
                found = config.find_config_file()
                self.assertIsNotNone(found)
                self.assertEqual(Path(found).name, "tracelet.toml")
            finally:
                os.chdir(original_cwd)

    def test_find_config_file_home_directory(self):
        with tempfile.TemporaryDirectory() as tmpdir, tempfile.TemporaryDirectory() as home:
            home_config = Path(home) / ".tracelet" / "config.toml"
            home_config.parent.mkdir()
            home_config.write_text("[tracing]\n")
            original_cwd = os.getcwd()
            try:
                os.chdir(tmpdir)
                with mock.patch.object(config, "HOME_CONFIG_PATH", home_config):
                    self.assertEqual(config.find_config_file(), str(home_config))
            finally:
                os.chdir(original_cwd)


class TestConfigPriority(unittest.TestCase):
    """Overrides beat env vars, which beat the config file."""

    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        self.path = _write_toml(self._tmpdir.name, """
[tracing]
service_name = "from-file"
sampler = "always_off"

[exporter]
type = "none"
""")

    def tearDown(self):
        self._tmpdir.cleanup()

    def test_file_values(self):
        with mock.patch.dict(os.environ, CLEAN_ENV, clear=True):
            cfg = config.load_config(config_file=self.path)
        self.assertEqual(cfg.tracing.service_name, "from-file")
        self.assertEqual(cfg.tracing.sampler, "always_off")
        self.assertEqual(cfg.batch.max_queue_size, 2048)

    def test_env_overrides_file(self):
        env = dict(CLEAN_ENV, TRACELET_SERVICE_NAME="from-env", TRACELET_BSP_MAX_QUEUE_SIZE="64")
        with mock.patch.dict(os.environ, env, clear=True):
            cfg = config.load_config(config_file=self.path)
        self.assertEqual(cfg.tracing.service_name, "from-env")
        self.assertEqual(cfg.batch.max_queue_size, 64)
        self.assertEqual(cfg.batch.max_export_batch_size, 64)

    def test_explicit_overrides_env(self):
        env = dict(CLEAN_ENV, TRACELET_SERVICE_NAME="from-env")
        with mock.patch.dict(os.environ, env, clear=True):
            cfg = config.load_config(
                config_file=self.path, overrides={"tracing": {"service_name": "explicit"}}
            )
        self.assertEqual(cfg.tracing.service_name, "explicit")
        self.assertEqual(cfg.tracing.sampler, "always_off")

    def test_env_types_are_coerced(self):
        env = dict(
            CLEAN_ENV,
            TRACELET_SAMPLER="TraceIdRatio",
            TRACELET_SAMPLER_ARG="0.25",
            TRACELET_DEBUG="true",
            TRACELET_EXPORTER="OTLP",
            TRACELET_ENDPOINT="http://collector:4318/v1/traces",
        )
        with mock.patch.dict(os.environ, env, clear=True):
            cfg = config.load_config(config_file=self.path)
        self.assertEqual(cfg.tracing.sampler, "traceidratio")
        self.assertEqual(cfg.tracing.sampler_arg, 0.25)
        self.assertTrue(cfg.logging.debug)
        self.assertEqual(cfg.exporter.type, "otlp")


class TestConfigValidation:
    """Invalid settings fail fast with ConfigError."""

    @pytest.mark.parametrize(
        "overrides",
        [
            {"tracing": {"sampler_arg": 1.5}},
            {"tracing": {"sampler": "sometimes"}},
            {"exporter": {"type": "zipkin"}},
            {"exporter": {"endpoint": "not a url"}},
            {"exporter": {"endpoint": "ftp://collector:4318"}},
            {"exporter": {"timeout": 0}},
            {"batch": {"max_queue_size": 10, "max_export_batch_size": 20}},
            {"batch": {"schedule_delay_millis": -5}},
            {"tracing": {"max_attributes": -1}},
        ],
    )
    def test_invalid_config_raises(self, overrides, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        with pytest.raises(ConfigError):
            config.load_config(overrides=overrides)

    def test_validate_config_reports_errors(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        ok, message, cfg = config.validate_config(overrides={"tracing": {"sampler_arg": 7}})
        assert not ok
        assert "sampler_arg" in message
        assert cfg is None

    def test_validate_config_ok(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        ok, message, cfg = config.validate_config(overrides={"exporter": {"type": "none"}})
        assert ok
        assert cfg.exporter.type == "none"

    def test_config_error_formatting(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        with pytest.raises(ConfigError) as excinfo:
            config.load_config(overrides={"exporter": {"type": "zipkin"}})
        assert "exporter.type" in str(excinfo.value)


class TestBuilders:
    """Configuration turns into a wired TracerProvider."""

    def _config(self, **sections):
        return config.SDKConfig.model_validate(sections)

    def test_build_sampler(self):
        assert config.build_sampler(self._config(tracing={"sampler": "always_off"})) is ALWAYS_OFF
        sampler = config.build_sampler(
            self._config(tracing={"sampler": "traceidratio", "sampler_arg": 0.1})
        )
        assert isinstance(sampler, TraceIdRatioBased)
        assert sampler.rate == 0.1

    def test_build_exporter(self):
        assert config.build_exporter(self._config(exporter={"type": "none"})) is None
        assert isinstance(config.build_exporter(self._config()), ConsoleExporter)
        otlp = config.build_exporter(
            self._config(exporter={"type": "otlp", "endpoint": "http://localhost:4318/v1/traces"})
        )
        assert isinstance(otlp, OTLPExporter)
        otlp.shutdown()

    def test_build_span_limits(self):
        limits = config.build_span_limits(
            self._config(tracing={"max_attributes": 5, "max_attribute_length": 10})
        )
        assert limits.max_attributes == 5
        assert limits.max_attribute_length == 10

    def test_build_tracer_provider_batch(self):
        cfg = self._config(
            tracing={"service_name": "svc", "service_version": "1.2.3"},
            batch={"max_queue_size": 10, "max_export_batch_size": 5},
        )
        provider = config.build_tracer_provider(cfg)
        try:
            processors = provider.span_processor.span_processors
            assert len(processors) == 1
            assert isinstance(processors[0], BatchSpanProcessor)
            assert processors[0].max_queue_size == 10
            assert provider.resource.attributes["service.name"] == "svc"
            assert provider.resource.attributes["service.version"] == "1.2.3"
        finally:
            provider.shutdown()

    def test_build_tracer_provider_simple_and_debug(self):
        cfg = self._config(batch={"use_simple_processor": True}, logging={"debug": True})
        provider = config.build_tracer_provider(cfg)
        try:
            kinds = [type(p) for p in provider.span_processor.span_processors]
            assert kinds == [LoggingSpanProcessor, SimpleSpanProcessor]
        finally:
            provider.shutdown()

    def test_build_tracer_provider_without_exporter(self):
        provider = config.build_tracer_provider(self._config(exporter={"type": "none"}))
        try:
            assert provider.span_processor.span_processors == ()
        finally:
            provider.shutdown()
