import importlib
import subprocess
from importlib import metadata
from unittest.mock import patch

import shared.build_info as build_info_module


class TestGitShortSha:
    def test_strips_git_output(self):
        with patch("subprocess.check_output", return_value="abc1234\n"):
            assert build_info_module._git_short_sha() == "abc1234"

    def test_dev_when_git_missing(self):
        with patch("subprocess.check_output", side_effect=FileNotFoundError):
            assert build_info_module._git_short_sha() == "dev"

    def test_dev_outside_a_repository(self):
        with patch("subprocess.check_output", side_effect=subprocess.CalledProcessError(128, "git")):
            assert build_info_module._git_short_sha() == "dev"


class TestInstalledVersion:
    def test_reads_distribution_metadata(self):
        with patch("shared.build_info.metadata.version", return_value="0.4.0") as version:
            assert build_info_module._installed_version() == "0.4.0"
        version.assert_called_once_with("scorelink")

    def test_dev_when_not_installed(self):
        with patch("shared.build_info.metadata.version", side_effect=metadata.PackageNotFoundError):
            assert build_info_module._installed_version() == "dev"


class TestModuleLevelConstants:
    def test_env_overrides_both_values(self):
        with patch.dict("os.environ", {"APP_VERSION": "1.2.3", "GIT_COMMIT": "feedbee"}):
            importlib.reload(build_info_module)
            assert build_info_module.APP_VERSION == "1.2.3"
            assert build_info_module.GIT_COMMIT == "feedbee"
        importlib.reload(build_info_module)
