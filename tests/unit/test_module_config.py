"""Tests for ModuleBuildConfig: accumulators, sealing, serialization."""

import json
from pathlib import Path

import pytest

from modflags.errors import ConfigSealedError
from modflags.module_config import FORMAT_VERSION, ModuleBuildConfig


def _populated_config() -> ModuleBuildConfig:
    dep = ModuleBuildConfig("common").add_public_define("COMMON_VERSION", "2").add_link_target("pthread")
    config = ModuleBuildConfig("checksums", link_search_path=Path("/build/checksums/out"))
    config.add_dependency_config(dep)
    config.add_private_flag("-O3").add_public_flag("-fno-strict-aliasing")
    config.add_private_define("CRC_TABLE", "1").add_public_define("CHECKSUMS_API", "")
    config.add_link_target("m").add_include_dir("/src/checksums/include")
    config.set_shared(True).set_lib_name("aws-checksums")
    return config


class TestConstruction:
    """Test defaults and module name rules."""

    def test_defaults(self):
        config = ModuleBuildConfig("common")

        assert config.module_name == "common"
        assert config.lib_name == "common"
        assert config.dependencies == []
        assert config.private_flags == []
        assert config.public_flags == []
        assert config.private_defines == []
        assert config.public_defines == []
        assert config.link_targets == []
        assert config.include_dirs == []
        assert config.shared_lib is False
        assert config.link_search_path is None
        assert config.sealed is False

    @pytest.mark.parametrize("name", ["", "has space", "a/b", "..", "semi;colon"])
    def test_invalid_module_names_rejected(self, name):
        with pytest.raises(ValueError):
            ModuleBuildConfig(name)

    def test_module_name_is_immutable(self):
        config = ModuleBuildConfig("common")

        with pytest.raises(AttributeError):
            config.module_name = "other"

        assert config.module_name == "common"


class TestAccumulators:
    """Test fluent accumulation."""

    def test_accumulators_return_self(self):
        config = ModuleBuildConfig("common")

        assert config.add_public_flag("-a") is config
        assert config.add_private_flag("-b") is config
        assert config.add_public_define("K", "V") is config
        assert config.add_private_define("K", "V") is config
        assert config.add_link_target("m") is config
        assert config.add_include_dir("/inc") is config
        assert config.set_shared() is config
        assert config.set_search_path("/lib") is config
        assert config.set_lib_name("x") is config

    def test_insertion_order_and_duplicates_preserved(self):
        config = ModuleBuildConfig("common")
        config.add_public_define("LEVEL", "1").add_public_define("LEVEL", "2")
        config.add_private_flag("-O2").add_private_flag("-O3").add_private_flag("-O2")

        assert config.public_defines == [("LEVEL", "1"), ("LEVEL", "2")]
        assert config.private_flags == ["-O2", "-O3", "-O2"]

    def test_empty_strings_rejected(self):
        config = ModuleBuildConfig("common")

        with pytest.raises(ValueError):
            config.add_public_flag("")
        with pytest.raises(ValueError):
            config.add_private_define("", "1")
        with pytest.raises(ValueError):
            config.add_link_target("")

    def test_empty_define_value_allowed(self):
        config = ModuleBuildConfig("common").add_public_define("HAVE_FEATURE", "")

        assert config.public_defines == [("HAVE_FEATURE", "")]

    def test_search_path_can_be_cleared(self):
        config = ModuleBuildConfig("common", link_search_path=Path("/out"))
        config.set_search_path(None)

        assert config.link_search_path is None


class TestSealing:
    """Test immutability after seal()."""

    def test_sealed_config_rejects_mutation(self):
        config = ModuleBuildConfig("common").seal()

        with pytest.raises(ConfigSealedError):
            config.add_public_flag("-fPIC")
        with pytest.raises(ConfigSealedError):
            config.set_shared()
        with pytest.raises(ConfigSealedError):
            config.add_dependency_config(ModuleBuildConfig("other"))

    def test_embedded_dependency_is_sealed_copy(self):
        upstream = ModuleBuildConfig("common").add_public_flag("-DX")
        downstream = ModuleBuildConfig("checksums").add_dependency_config(upstream)

        upstream.add_public_flag("-DLATER")

        embedded = downstream.dependencies[0]
        assert embedded is not upstream
        assert embedded.public_flags == ["-DX"]
        assert embedded.sealed
        with pytest.raises(ConfigSealedError):
            embedded.add_public_flag("-DY")


class TestSerialization:
    """Test to_dict/from_dict and JSON payloads."""

    def test_json_roundtrip_is_lossless(self):
        config = _populated_config()

        restored = ModuleBuildConfig.from_json(config.to_json())

        assert restored == config
        assert restored.dependencies[0].public_defines == [("COMMON_VERSION", "2")]
        assert restored.link_search_path == Path("/build/checksums/out")
        assert restored.include_dirs == [Path("/src/checksums/include")]

    def test_deserialized_config_is_sealed(self):
        restored = ModuleBuildConfig.from_json(ModuleBuildConfig("common").to_json())

        assert restored.sealed
        with pytest.raises(ConfigSealedError):
            restored.add_link_target("m")

    def test_to_dict_shape(self):
        data = _populated_config().to_dict()

        assert data["format_version"] == FORMAT_VERSION
        assert data["module_name"] == "checksums"
        assert data["lib_name"] == "aws-checksums"
        assert data["private_defines"] == [["CRC_TABLE", "1"]]
        assert data["shared_lib"] is True
        assert data["dependencies"][0]["module_name"] == "common"
        json.dumps(data)

    def test_from_dict_defaults_optional_fields(self):
        config = ModuleBuildConfig.from_dict({"module_name": "common"})

        assert config == ModuleBuildConfig("common")

    def test_from_dict_rejects_unknown_version(self):
        with pytest.raises(ValueError, match="format version"):
            ModuleBuildConfig.from_dict({"format_version": 99, "module_name": "common"})

    def test_from_dict_rejects_malformed_defines(self):
        with pytest.raises(ValueError):
            ModuleBuildConfig.from_dict({"module_name": "common", "public_defines": [["ONLY_KEY"]]})

    def test_from_dict_requires_module_name(self):
        with pytest.raises(KeyError):
            ModuleBuildConfig.from_dict({"lib_name": "x"})

    def test_from_json_rejects_invalid_json(self):
        with pytest.raises(ValueError):
            ModuleBuildConfig.from_json("not valid json {{{")


class TestViews:
    """Test public_settings() and transitive_link_targets()."""

    def test_public_settings_exclude_private(self):
        settings = _populated_config().public_settings()

        assert settings.flags == ("-fno-strict-aliasing",)
        assert settings.defines == (("CHECKSUMS_API", ""),)
        assert settings.include_dirs == (Path("/src/checksums/include"),)

    def test_transitive_link_targets_depth_first_without_duplicates(self):
        base = ModuleBuildConfig("base").add_link_target("pthread")
        common = ModuleBuildConfig("common").add_link_target("m").add_dependency_config(base)
        io = ModuleBuildConfig("io").add_link_target("pthread").add_link_target("dl")
        top = ModuleBuildConfig("top").add_link_target("top").add_dependency_config(common).add_dependency_config(io)

        assert top.transitive_link_targets() == ["top", "m", "pthread", "dl"]

    def test_transitive_dependencies_depth_first_listed_once(self):
        base = ModuleBuildConfig("base")
        common = ModuleBuildConfig("common").add_dependency_config(base)
        io = ModuleBuildConfig("io").add_dependency_config(base)
        top = ModuleBuildConfig("top").add_dependency_config(common).add_dependency_config(io)

        names = [dep.module_name for dep in top.transitive_dependencies()]

        assert names == ["common", "base", "io"]

    def test_transitive_dependencies_empty_without_dependencies(self):
        assert ModuleBuildConfig("common").transitive_dependencies() == []
