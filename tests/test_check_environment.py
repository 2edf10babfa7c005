from encounter_rate.config.check_environment import (
    check_import, check_operations, main
)


def test_required_packages_import(capsys):
    ok, version = check_import('numpy')
    assert ok and version
    assert 'numpy' in capsys.readouterr().out


def test_missing_package_reported():
    ok, version = check_import('not_a_real_package_xyz')
    assert not ok and version is None


def test_operations_and_main():
    assert check_operations()
    assert main() == 0
