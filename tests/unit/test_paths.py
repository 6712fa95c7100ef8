"""Tests for environment-derived locations and settings."""

from pathlib import Path

import pytest

from modflags import paths


class TestPropagationKey:
    def test_key_format(self):
        assert paths.propagation_key("aws_crt_common") == "MODFLAGS_MODULE_aws_crt_common_BUILD_CFG"

    def test_key_roundtrip(self):
        assert paths.module_name_from_key(paths.propagation_key("aws-c-io.tls")) == "aws-c-io.tls"

    @pytest.mark.parametrize("key", ["OTHER_KEY", "MODFLAGS_MODULE__BUILD_CFG", "MODFLAGS_MODULE_x"])
    def test_non_module_keys(self, key):
        assert paths.module_name_from_key(key) is None

    @pytest.mark.parametrize("name", ["", ".", "..", "a b", "a/b", "a\\b", "x;y"])
    def test_invalid_names(self, name):
        with pytest.raises(ValueError):
            paths.propagation_key(name)


class TestOutDir:
    def test_modflags_out_dir_wins(self, monkeypatch, tmp_path):
        monkeypatch.setenv("MODFLAGS_OUT_DIR", str(tmp_path / "a"))
        monkeypatch.setenv("OUT_DIR", str(tmp_path / "b"))

        assert paths.get_out_dir() == tmp_path / "a"

    def test_out_dir_fallback(self, monkeypatch, tmp_path):
        monkeypatch.setenv("OUT_DIR", str(tmp_path / "b"))

        assert paths.get_out_dir() == tmp_path / "b"

    def test_missing_out_dir_raises(self):
        with pytest.raises(EnvironmentError, match="OUT_DIR"):
            paths.get_out_dir()


class TestSessionDir:
    def test_explicit_session_dir(self, monkeypatch, tmp_path):
        monkeypatch.setenv("MODFLAGS_SESSION_DIR", str(tmp_path / "s"))

        assert paths.get_session_dir() == tmp_path / "s"

    def test_named_session(self, monkeypatch):
        monkeypatch.delenv("MODFLAGS_SESSION_DIR")
        monkeypatch.setenv("MODFLAGS_SESSION", "ci-1234")

        assert paths.get_session_dir() == paths.SESSIONS_DIR / "ci-1234"

    def test_session_derived_from_cargo_out_dir(self, monkeypatch, tmp_path):
        monkeypatch.delenv("MODFLAGS_SESSION_DIR")
        monkeypatch.setenv("OUT_DIR", str(tmp_path / "target" / "release" / "build" / "aws-c-common-1f2e" / "out"))

        assert paths.get_session_dir() == tmp_path / "target" / "release" / "modflags-session"

    def test_build_scripts_of_one_profile_share_a_session(self, monkeypatch, tmp_path):
        monkeypatch.delenv("MODFLAGS_SESSION_DIR")
        sessions = set()
        for package in ("aws-c-common-1f2e", "aws-checksums-9c0d"):
            monkeypatch.setenv("OUT_DIR", str(tmp_path / "target" / "debug" / "build" / package / "out"))
            sessions.add(paths.get_session_dir())

        assert sessions == {tmp_path / "target" / "debug" / "modflags-session"}

    def test_profiles_get_separate_sessions(self, monkeypatch, tmp_path):
        monkeypatch.delenv("MODFLAGS_SESSION_DIR")
        monkeypatch.setenv("OUT_DIR", str(tmp_path / "target" / "debug" / "build" / "aws-c-common-1f2e" / "out"))
        debug = paths.get_session_dir()
        monkeypatch.setenv("OUT_DIR", str(tmp_path / "target" / "release" / "build" / "aws-c-common-1f2e" / "out"))
        release = paths.get_session_dir()

        assert debug != release

    def test_named_session_wins_over_out_dir(self, monkeypatch, tmp_path):
        monkeypatch.delenv("MODFLAGS_SESSION_DIR")
        monkeypatch.setenv("MODFLAGS_SESSION", "ci-1234")
        monkeypatch.setenv("OUT_DIR", str(tmp_path / "target" / "debug" / "build" / "x-1" / "out"))

        assert paths.get_session_dir() == paths.SESSIONS_DIR / "ci-1234"

    def test_unrecognized_out_dir_raises(self, monkeypatch, tmp_path):
        monkeypatch.delenv("MODFLAGS_SESSION_DIR")
        monkeypatch.setenv("OUT_DIR", str(tmp_path / "build-output"))

        with pytest.raises(EnvironmentError, match="MODFLAGS_SESSION_DIR"):
            paths.get_session_dir()

    def test_no_session_and_no_out_dir_raises(self, monkeypatch):
        monkeypatch.delenv("MODFLAGS_SESSION_DIR")

        with pytest.raises(EnvironmentError, match="No build session"):
            paths.get_session_dir()

    @pytest.mark.parametrize(
        "out_dir",
        ["/ws/target/debug/build/pkg-1/out/sub", "/ws/target/debug/pkg-1/out", "/ws/out"],
    )
    def test_session_dir_for_other_shapes(self, out_dir):
        assert paths.session_dir_for_out_dir(Path(out_dir)) is None


class TestSettings:
    def test_directive_prefix_default(self):
        assert paths.get_directive_prefix() == "cargo:rustc-"

    def test_directive_prefix_override(self, monkeypatch):
        monkeypatch.setenv("MODFLAGS_DIRECTIVE_PREFIX", "build:")

        assert paths.get_directive_prefix() == "build:"

    def test_compile_timeout_default(self):
        assert paths.get_compile_timeout() == 600.0

    def test_compile_timeout_override(self, monkeypatch):
        monkeypatch.setenv("MODFLAGS_COMPILE_TIMEOUT", "42.5")

        assert paths.get_compile_timeout() == 42.5

    @pytest.mark.parametrize("raw", ["soon", "0", "-3"])
    def test_compile_timeout_invalid(self, monkeypatch, raw):
        monkeypatch.setenv("MODFLAGS_COMPILE_TIMEOUT", raw)

        with pytest.raises(ValueError):
            paths.get_compile_timeout()

    def test_verbose_by_default(self):
        assert paths.is_verbose() is True

    def test_verbose_disabled(self, monkeypatch):
        monkeypatch.setenv("MODFLAGS_VERBOSE", "0")

        assert paths.is_verbose() is False

    def test_session_root_under_home(self):
        assert paths.SESSIONS_DIR == Path.home() / ".modflags" / "sessions"
