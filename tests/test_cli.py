"""Tests for the s3bridge command line."""

import argparse
from unittest.mock import patch

import pytest
import yaml

from s3bridge.cli import (
    build_config,
    main,
    merge_mounts,
    parse_args,
    parse_mount,
    validate_mounts,
)
from s3bridge.config import MountConfig, ProxyConfig


def _write_config(tmp_path, data) -> str:
    path = tmp_path / "s3bridge.yaml"
    path.write_text(yaml.dump(data))
    return str(path)


class TestParseMount:
    """Tests for parse_mount()."""

    def test_bucket_only(self):
        mount = parse_mount("/assets=site-assets")
        assert mount.path == "/assets"
        assert mount.proxy.bucket == "site-assets"
        assert mount.proxy.key_prefix is None

    def test_bucket_and_prefix(self):
        mount = parse_mount("/assets/=site-assets/public/v2/")
        assert mount.path == "/assets"
        assert mount.proxy.key_prefix == "public/v2"

    def test_root_mount(self):
        assert parse_mount("/=site").path == "/"

    @pytest.mark.parametrize("value", ["/assets", "=bucket", "/assets=", "/assets=/prefix"])
    def test_malformed(self, value):
        with pytest.raises(argparse.ArgumentTypeError):
            parse_mount(value)

    def test_repeatable_option(self):
        args = parse_args(["--mount", "/a=one", "--mount", "/b=two/p"])
        assert [(m.path, m.proxy.bucket) for m in args.mounts] == [("/a", "one"), ("/b", "two")]

    def test_bad_option_exits(self):
        with pytest.raises(SystemExit):
            parse_args(["--mount", "nonsense"])


class TestMergeMounts:
    """--mount options layered over configured mounts."""

    def test_override_keeps_policies(self):
        configured = [
            MountConfig(
                path="/data/",
                proxy=ProxyConfig(bucket="old", key_prefix="x", csv_to_json=True),
            )
        ]
        merged = merge_mounts(configured, [parse_mount("/data=new/dumps")])
        assert len(merged) == 1
        assert merged[0].proxy.bucket == "new"
        assert merged[0].proxy.key_prefix == "dumps"
        assert merged[0].proxy.csv_to_json is True

    def test_new_path_appended(self):
        configured = [MountConfig(path="/a", proxy=ProxyConfig(bucket="one"))]
        merged = merge_mounts(configured, [parse_mount("/b=two")])
        assert [m.path for m in merged] == ["/a", "/b"]


class TestValidateMounts:
    """Tests for validate_mounts()."""

    def test_valid(self):
        assert validate_mounts([parse_mount("/a=one"), parse_mount("/b=two")]) == []

    def test_empty(self):
        assert validate_mounts([]) == ["no mounts configured"]

    def test_duplicate_paths(self):
        mounts = [
            MountConfig(path="/a", proxy=ProxyConfig(bucket="one")),
            MountConfig(path="/a/", proxy=ProxyConfig(bucket="two")),
        ]
        assert validate_mounts(mounts) == ["mount path '/a' is configured twice"]

    def test_relative_and_reserved_paths(self):
        mounts = [
            MountConfig(path="assets", proxy=ProxyConfig(bucket="one")),
            MountConfig(path="/metrics", proxy=ProxyConfig(bucket="two")),
        ]
        problems = validate_mounts(mounts)
        assert "mount path 'assets' must start with '/'" in problems
        assert "mount path '/metrics' is reserved" in problems


class TestBuildConfig:
    """Config file plus command line overrides."""

    def test_mounts_without_config_file(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        config = build_config(parse_args(["--mount", "/a=one", "--backend", "memory"]))
        assert config.store.backend == "memory"
        assert [m.path for m in config.mounts] == ["/a"]

    def test_overrides_applied_to_file(self, tmp_path):
        path = _write_config(
            tmp_path,
            {"server": {"port": 9001}, "mounts": [{"path": "/files", "bucket": "site"}]},
        )
        config = build_config(
            parse_args(
                [
                    "--config", path,
                    "--port", "9002",
                    "--endpoint-url", "http://localhost:9000",
                    "--seed-dir", "/srv/buckets",
                    "--log-format", "json",
                ]
            )
        )
        assert config.server.port == 9002
        assert config.store.endpoint_url == "http://localhost:9000"
        assert config.store.memory_seed_dir == "/srv/buckets"
        assert config.server.log_format == "json"
        assert config.mounts[0].proxy.bucket == "site"


class TestMain:
    """Tests for main() startup checks."""

    def test_missing_config_exits(self, tmp_path):
        with pytest.raises(SystemExit) as exc_info:
            main(["--config", str(tmp_path / "missing.yaml")])
        assert exc_info.value.code == 1

    def test_no_mounts_exits(self, tmp_path):
        path = _write_config(tmp_path, {"server": {"port": 9001}})
        with pytest.raises(SystemExit) as exc_info:
            main(["--config", path])
        assert exc_info.value.code == 1

    def test_runs_uvicorn_with_overrides(self, tmp_path):
        path = _write_config(
            tmp_path,
            {
                "store": {"backend": "memory"},
                "observability": {"metrics": False},
                "mounts": [{"path": "/files", "bucket": "site"}],
            },
        )
        with patch("s3bridge.cli.uvicorn.run") as run, patch("s3bridge.cli.configure_logging"):
            main(["--config", path, "--host", "127.0.0.1", "--port", "9002"])

        run.assert_called_once()
        kwargs = run.call_args.kwargs
        assert kwargs["host"] == "127.0.0.1"
        assert kwargs["port"] == 9002
        assert kwargs["log_level"] == "info"
        assert kwargs["access_log"] is False
