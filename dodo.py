"""
doit tasks for building and testing Rustic.
Run with: doit
"""

import os
from pathlib import Path

# Directories
OUTPUT_DIR = 'outputs'
SAMPLES_DIR = 'tests/samples'

# Python test files
PYTHON_TESTS = sorted(str(p) for p in Path('tests').glob('test_*.py'))
SAMPLES = sorted(str(p) for p in Path(SAMPLES_DIR).glob('*.rsc'))


def ensure_output_dir():
    """Create output directory if it doesn't exist"""
    os.makedirs(OUTPUT_DIR, exist_ok=True)


def task_test_python():
    """Run Python tests"""
    def run_python_tests():
        import pytest
        return pytest.main(['-v'] + PYTHON_TESTS) == 0

    return {
        'actions': [run_python_tests],
        'file_dep': PYTHON_TESTS,
        'verbosity': 2,
    }


def task_samples():
    """Compile the sample programs to Rust"""
    ensure_output_dir()
    return {
        'actions': [f'rustic -o {OUTPUT_DIR} {" ".join(SAMPLES)}'],
        'file_dep': SAMPLES,
        'targets': [os.path.join(OUTPUT_DIR, 'lib.rs')],
        'clean': True,
        'verbosity': 2,
    }


def task_test():
    """Run all tests"""
    return {
        'actions': None,
        'task_dep': ['test_python', 'samples'],
    }
