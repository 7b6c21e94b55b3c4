import allure
from click.testing import CliRunner

from primenet_manager import __version__
from primenet_manager.main import primenet_manager

pytestmark = [
    allure.epic("Update Loop"),
    allure.feature("CLI Ops"),
]


def test_version():
    assert __version__


def test_version_option():
    runner = CliRunner()
    result = runner.invoke(primenet_manager, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output
