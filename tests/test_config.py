"""
Tests for configuration loading and validation.
"""

from planner_stack import (
    DEFAULT_CONFIG_PATH,
    PlanningConfig,
    build_planning_config,
    deep_merge,
    load_config,
)
from trajectory.concatenator import ConcatenatorConfig, build_concatenator_config


class TestLoadConfig:
    def test_default_file_has_all_sections(self):
        config = load_config()
        for section in ("vehicle", "planning", "trajectory", "candidate_planner", "control", "fail_safe"):
            assert section in config
        assert DEFAULT_CONFIG_PATH.exists()

    def test_default_file_matches_code_defaults(self):
        config = load_config()
        assert build_planning_config(config) == PlanningConfig()
        assert build_concatenator_config(config["trajectory"]) == ConcatenatorConfig()

    def test_missing_file_gives_empty_config(self, tmp_path):
        assert load_config(str(tmp_path / "nope.yaml")) == {}


class TestDeepMerge:
    def test_nested_update(self):
        base = {"planning": {"cycle_deadline": 0.1, "min_planning_speed": 1.0}, "vehicle": {"width": 1.9}}
        merged = deep_merge(base, {"planning": {"cycle_deadline": 0.2}})
        assert merged["planning"] == {"cycle_deadline": 0.2, "min_planning_speed": 1.0}
        assert merged["vehicle"] == {"width": 1.9}
        assert base["planning"]["cycle_deadline"] == 0.1

    def test_scalar_replaces_section(self):
        assert deep_merge({"a": {"b": 1}}, {"a": 3}) == {"a": 3}


class TestBuildPlanningConfig:
    def test_empty_config_uses_defaults(self):
        assert build_planning_config({}) == PlanningConfig()

    def test_invalid_values_fall_back(self):
        planning = build_planning_config({
            "vehicle": {"width": -1.0},
            "planning": {"cycle_deadline": 0.0, "lane_change_margin": -2.0, "default_dt": -0.1},
        })
        defaults = PlanningConfig()
        assert planning.vehicle_width == defaults.vehicle_width
        assert planning.cycle_deadline == defaults.cycle_deadline
        assert planning.lane_change_margin == 0.0
        assert planning.default_dt == defaults.default_dt

    def test_target_lane_and_front_axle(self):
        planning = build_planning_config({"vehicle": {"wheelbase": 3.1}, "planning": {"target_lane_id": "2"}})
        assert planning.target_lane_id == 2
        assert planning.front_axle_offset == 3.1
