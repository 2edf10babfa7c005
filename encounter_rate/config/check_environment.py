#!/usr/bin/env python3
"""
Environment Check for the Encounter Rate Pipeline
=================================================
Checks that all required packages are installed and that the core numerical
pieces (tree fitting, bounded least squares, projections) actually run.

Run: encounter-rate-check-env
"""

import importlib
import sys


REQUIRED_PACKAGES = [
    ('numpy', 'numpy'),
    ('pandas', 'pandas'),
    ('scipy', 'scipy'),
    ('sklearn', 'scikit-learn'),
    ('pyproj', 'pyproj'),
    ('tqdm', 'tqdm'),
    ('matplotlib', 'matplotlib'),
    ('seaborn', 'seaborn'),
]


def check_import(import_name, package_name=None):
    """Return (ok, version) for a package."""
    if package_name is None:
        package_name = import_name

    try:
        module = importlib.import_module(import_name)
    except ImportError as e:
        print(f"✗ {package_name} - {e}")
        return False, None

    version = getattr(module, '__version__', 'unknown')
    print(f"✓ {package_name} ({version})")
    return True, version


def check_operations():
    """Run a tiny fit through each numerical dependency."""
    import numpy as np
    from pyproj import Transformer
    from scipy.optimize import lsq_linear
    from sklearn.tree import DecisionTreeClassifier

    results = []

    rng = np.random.default_rng(0)
    X = rng.normal(size=(50, 2))
    y = (X[:, 0] > 0).astype(int)
    tree = DecisionTreeClassifier(random_state=0).fit(X, y)
    ok = tree.score(X, y) == 1.0
    print(f"{'✓' if ok else '✗'} Decision tree fit")
    results.append(ok)

    fit = lsq_linear(np.eye(3), np.array([1.0, -1.0, 2.0]),
                     bounds=(np.zeros(3), np.full(3, np.inf)))
    ok = bool(np.all(fit.x >= 0))
    print(f"{'✓' if ok else '✗'} Bounded least squares")
    results.append(ok)

    transformer = Transformer.from_crs('EPSG:4326', 'EPSG:6933',
                                       always_xy=True)
    x, _ = transformer.transform(0.0, 0.0)
    ok = abs(x) < 1e-6
    print(f"{'✓' if ok else '✗'} Equal-area projection")
    results.append(ok)

    return all(results)


def main():
    print("=" * 70)
    print("Encounter Rate Pipeline - Environment Check")
    print("=" * 70)
    print()
    print(f"Python version: {sys.version}")
    print(f"Python executable: {sys.executable}")
    print()

    print("Checking Packages:")
    print("-" * 50)
    package_results = [check_import(import_name, package_name)[0]
                       for import_name, package_name in REQUIRED_PACKAGES]
    print()

    if not all(package_results):
        print("✗ Some packages are missing.")
        print("Install with: pip install -e .")
        return 1

    print("Checking Operations:")
    print("-" * 50)
    operations_ok = check_operations()
    print()

    print("=" * 70)
    if operations_ok:
        print("✓ Environment ready. Run: encounter-rate --help")
        return 0

    print("✗ Some operations failed. Review the output above.")
    return 1


if __name__ == "__main__":
    sys.exit(main())
