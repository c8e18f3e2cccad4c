"""Unit tests for configuration loading."""

from pathlib import Path

import pytest

from recist_review.config import INPUT_KEYS, DerivationConfig, ReviewConfig

DEFAULT_CONFIG = Path(__file__).parent.parent / "configs" / "default.yaml"


class TestReviewConfig:
    """Tests for ReviewConfig."""

    def test_default_config(self):
        """Default config should have valid values."""
        config = ReviewConfig()

        assert config.derivation.excluded_subjects == ["0103-004"]
        assert config.derivation.pd_percent == 20.0
        assert config.derivation.pr_percent == -30.0
        assert config.cohort.dose_event_num == 1
        assert config.columns.subject == "subject"

    def test_from_yaml(self):
        """The shipped YAML should load with every input configured."""
        config = ReviewConfig.from_yaml(DEFAULT_CONFIG)

        config.validate()
        assert set(config.inputs) == set(INPUT_KEYS)
        assert config.sheet("new_lesions").sheet == "New Lesions"
        assert config.sheet("medication").header_row == 1
        assert Path(config.sheet("medication").path).is_absolute()
        assert config.derivation.site_pattern == r"^(\d{4})-\d+$"

    def test_from_dict_resolves_relative_paths(self, tmp_path):
        """Relative input paths should resolve against base_dir."""
        config = ReviewConfig.from_dict(
            {"inputs": {"medication": {"path": "med.xlsx", "sheet": "Dosing"}}},
            base_dir=tmp_path,
        )

        assert config.sheet("medication").path == str(tmp_path / "med.xlsx")
        assert config.sheet("medication").header_row == 0

    def test_default_output_dir_resolves_against_base_dir(self, tmp_path):
        """The default output directory should follow the config location too."""
        config = ReviewConfig.from_dict({"inputs": {}}, base_dir=tmp_path)

        assert config.output.output_dir == str(tmp_path / "results")

    def test_unknown_section_key(self):
        """Unknown keys in a section should be rejected."""
        with pytest.raises(ValueError, match="Unknown DerivationConfig keys"):
            ReviewConfig.from_dict({"derivation": {"nadir_mode": "global"}})

    def test_validate_missing_inputs(self):
        """validate() should list unconfigured inputs."""
        config = ReviewConfig.from_dict({"inputs": {"medication": {"path": "m.xlsx", "sheet": "S"}}})

        with pytest.raises(ValueError, match="missing required inputs"):
            config.validate()

    def test_missing_input_key(self):
        """sheet() should raise KeyError for an unconfigured input."""
        with pytest.raises(KeyError):
            ReviewConfig().sheet("medication")

    def test_missing_yaml(self, tmp_path):
        """A missing config file should raise FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            ReviewConfig.from_yaml(tmp_path / "nope.yaml")

    def test_derivation_overrides(self):
        """Section values should override defaults."""
        config = ReviewConfig.from_dict({"derivation": {"excluded_subjects": [], "pd_absolute_mm": 0}})

        assert config.derivation == DerivationConfig(excluded_subjects=[], pd_absolute_mm=0)
