"""Unit tests for jogarm.config."""

import pytest

from jogarm.config import JogParameters, load_parameters
from jogarm.errors import ConfigError


class TestJogParameters:
    """Construction and validation of the tunables."""

    def test_defaults_are_valid(self):
        params = JogParameters().validate()
        assert params.command_in_type == "unitless"
        assert params.collision_check_period == pytest.approx(0.1)

    def test_hard_stop_must_be_below_lower_threshold(self):
        params = JogParameters(
            lower_collision_proximity_threshold=0.01,
            hard_stop_collision_proximity_threshold=0.02,
        )
        with pytest.raises(ConfigError, match="hard_stop_collision"):
            params.validate()

    def test_non_positive_period_rejected(self):
        with pytest.raises(ConfigError, match="publish_period"):
            JogParameters(publish_period=0.0).validate()

    def test_array_output_needs_exactly_one_field(self):
        with pytest.raises(ConfigError, match="array output"):
            JogParameters(
                command_out_type="array",
                publish_joint_positions=True,
                publish_joint_velocities=True,
            ).validate()

    def test_errors_lists_every_problem(self):
        params = JogParameters(publish_period=-1.0, command_in_type="furlongs")  # type: ignore[arg-type]
        problems = params.errors()
        assert len(problems) == 2

    def test_is_frozen(self):
        params = JogParameters()
        with pytest.raises(AttributeError):
            params.linear_scale = 1.0  # type: ignore[misc]


class TestFromMapping:
    def test_coerces_strings(self):
        params = JogParameters.from_mapping(
            {
                "linear_scale": "0.5",
                "num_halt_msgs_to_publish": "7",
                "collision_check": "false",
                "planning_frame": "world",
            }
        )
        assert params.linear_scale == 0.5
        assert params.num_halt_msgs_to_publish == 7
        assert params.collision_check is False
        assert params.planning_frame == "world"

    def test_unknown_keys_rejected(self):
        with pytest.raises(ConfigError, match="gazebo"):
            JogParameters.from_mapping({"gazebo": True})

    def test_bad_value_rejected(self):
        with pytest.raises(ConfigError, match="linear_scale"):
            JogParameters.from_mapping({"linear_scale": "fast"})


class TestEnvironmentOverrides:
    def test_env_overrides_apply(self):
        env = {"JOGARM_JOINT_SCALE": "0.02", "JOGARM_PUBLISH_JOINT_VELOCITIES": "yes"}
        params = JogParameters.from_env(env)
        assert params.joint_scale == 0.02
        assert params.publish_joint_velocities is True

    def test_no_overrides_returns_same_object(self):
        params = JogParameters()
        assert params.with_env_overrides({}) is params

    def test_invalid_override_rejected(self):
        with pytest.raises(ConfigError):
            JogParameters.from_env({"JOGARM_COLLISION_CHECK_RATE": "0"})


class TestLoadParameters:
    def test_flat_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("JOGARM_LINEAR_SCALE", raising=False)
        path = tmp_path / "jog.yaml"
        path.write_text("linear_scale: 0.01\ncommand_in_type: speed_units\n")
        params = load_parameters(path)
        assert params.linear_scale == 0.01
        assert params.command_in_type == "speed_units"

    def test_nested_node_with_ros_parameters(self, tmp_path):
        path = tmp_path / "jog.yaml"
        path.write_text(
            "jog_server:\n"
            "  ros__parameters:\n"
            "    planning_frame: world\n"
            "    joint_limit_margin: 0.2\n"
        )
        params = load_parameters(path, node="jog_server")
        assert params.planning_frame == "world"
        assert params.joint_limit_margin == 0.2

    def test_env_applied_after_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("JOGARM_ROTATIONAL_SCALE", "0.5")
        path = tmp_path / "jog.yaml"
        path.write_text("rotational_scale: 0.1\n")
        assert load_parameters(path).rotational_scale == 0.5

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "jog.yaml"
        path.write_text("")
        assert load_parameters(path) == JogParameters().with_env_overrides()

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="Failed to read"):
            load_parameters(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "jog.yaml"
        path.write_text("linear_scale: [unclosed\n")
        with pytest.raises(ConfigError):
            load_parameters(path)

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "jog.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_parameters(path)
