"""
Utility functions for bayeslmm.

This module provides helper functions for setting up the environment,
especially for HPC systems where Stan executables and chain outputs need
a writable temporary directory.
"""

import os
import tempfile
import warnings


def setup_hpc_environment(temp_dir=None):
    """
    Set up environment for HPC systems.

    This function configures temporary directories to avoid permission issues
    common on HPC systems where /tmp may not be writable or may be restricted.

    Parameters
    ----------
    temp_dir : str, optional
        Custom temporary directory path. If None, uses ~/tmp

    Returns
    -------
    str
        Path to the temporary directory being used

    Examples
    --------
    >>> from bayeslmm.utils import setup_hpc_environment
    >>> setup_hpc_environment('/scratch/user/tmp')
    '/scratch/user/tmp'
    """
    if temp_dir is None:
        temp_dir = os.path.expanduser('~/tmp')

    os.makedirs(temp_dir, exist_ok=True)

    os.environ['TMPDIR'] = temp_dir
    os.environ['TEMP'] = temp_dir
    os.environ['TMP'] = temp_dir

    tempfile.tempdir = temp_dir

    if not _is_writable(temp_dir):
        warnings.warn(
            f"Could not write to temporary directory {temp_dir}. "
            "You may encounter permission errors during model fitting."
        )
    return temp_dir


def _is_writable(directory):
    test_file = os.path.join(directory, '.bayeslmm_test')
    try:
        with open(test_file, 'w') as f:
            f.write('test')
        os.remove(test_file)
    except OSError:
        return False
    return True


def check_environment():
    """
    Check if the environment is properly configured.

    Returns
    -------
    dict
        Dictionary with environment information

    Examples
    --------
    >>> from bayeslmm.utils import check_environment
    >>> info = check_environment()
    >>> info['cpu_count'] >= 1
    True
    """
    info = {
        'temp_dir': tempfile.gettempdir(),
        'home_dir': os.path.expanduser('~'),
        'cwd': os.getcwd(),
        'cpu_count': os.cpu_count() or 1,
    }

    try:
        import cmdstanpy
        info['cmdstanpy_version'] = cmdstanpy.__version__
        try:
            info['cmdstan_path'] = cmdstanpy.cmdstan_path()
        except ValueError:
            info['cmdstan_path'] = 'Not installed'
    except ImportError:
        info['cmdstanpy_version'] = 'Not installed'

    try:
        import stan
        info['pystan_version'] = getattr(stan, '__version__', 'unknown')
    except ImportError:
        info['pystan_version'] = 'Not installed'

    try:
        import pymc
        info['pymc_version'] = pymc.__version__
    except ImportError:
        info['pymc_version'] = 'Not installed'

    info['temp_writable'] = _is_writable(info['temp_dir'])

    return info


def print_environment_info():
    """
    Print detailed environment information.

    Examples
    --------
    >>> from bayeslmm.utils import print_environment_info
    >>> print_environment_info()  # doctest: +SKIP
    Environment Information:
    ========================
    Temporary directory: /home/user/tmp
    ...
    """
    info = check_environment()

    print("Environment Information:")
    print("=" * 50)
    print(f"Temporary directory: {info['temp_dir']}")
    print(f"  Writable: {'Yes' if info['temp_writable'] else 'No'}")
    print(f"Home directory: {info['home_dir']}")
    print(f"Working directory: {info['cwd']}")
    print(f"CPUs available for chains: {info['cpu_count']}")
    print()
    print("Sampling Backends:")
    print(f"  CmdStanPy: {info['cmdstanpy_version']}")
    if 'cmdstan_path' in info:
        print(f"    Path: {info['cmdstan_path']}")
    print(f"  PyStan: {info['pystan_version']}")
    print(f"  PyMC: {info['pymc_version']}")
    print()

    if not info['temp_writable']:
        print("WARNING: Temporary directory is not writable!")
        print("  Run: from bayeslmm.utils import setup_hpc_environment")
        print("       setup_hpc_environment()")
        print()

    if all(info[k] == 'Not installed'
           for k in ('cmdstanpy_version', 'pystan_version', 'pymc_version')):
        print("WARNING: No sampling backend installed!")
        print("  Install CmdStanPy: pip install cmdstanpy")
        print("  Then run: python -m cmdstanpy.install_cmdstan")
        print()
