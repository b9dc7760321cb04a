"""
tests/test_models.py - configuration document loading.
"""
import pytest

from langmirror.models import (
    STATUS_PENDING,
    config_to_dict,
    dict_to_config,
    is_valid_language_code,
    split_language_code,
)


class TestLanguageCodes:
    @pytest.mark.parametrize("code,valid", [
        ("pt", True), ("pt-BR", True), ("fil", True),
        ("PT", False), ("pt_BR", False), ("pt-br", False), ("", False),
    ])
    def test_validation(self, code, valid):
        assert is_valid_language_code(code) is valid

    def test_split(self):
        assert split_language_code("pt-BR") == ("pt", "BR")
        assert split_language_code("ja") == ("ja", "")


class TestDictToConfig:
    def test_empty_gives_defaults(self):
        config = dict_to_config({})
        assert config.language_alternatives == []
        assert config.mirror_sync_interval_hours == 6

    def test_partial_document_is_filled_in(self):
        config = dict_to_config({
            "language_alternatives": [{
                "name": "Japanese",
                "language_code": "ja",
                "mirrored_libraries": [{"source_library_id": "anime"}],
            }],
            "user_language_assignments": [{"user_id": "u1", "language_alternative_id": ""}],
            "mirror_sync_interval_hours": "bogus",
        })
        alt = config.language_alternatives[0]
        assert alt.metadata_language == "ja"
        assert alt.id
        assert alt.mirrored_libraries[0].status == STATUS_PENDING
        assert alt.mirrored_libraries[0].target_library_id is None
        assert config.user_language_assignments[0].language_alternative_id is None
        assert config.user_language_assignments[0].is_plugin_managed is True
        assert config.mirror_sync_interval_hours == 6

    def test_non_list_section_is_rejected(self):
        with pytest.raises(TypeError):
            dict_to_config({"language_alternatives": {"oops": 1}})

    def test_ids_survive_a_save(self):
        config = dict_to_config({"language_alternatives": [{"name": "Japanese", "language_code": "ja"}]})
        again = dict_to_config(config_to_dict(config))
        assert again.language_alternatives[0].id == config.language_alternatives[0].id
