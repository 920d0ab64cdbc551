import sys
import logging
import subprocess
from errors import UnknownKeyError

logger = logging.getLogger(__name__)

# Optional dependency groups, by name
DEFAULT_DEPENDENCIES = dict({
    'examples': ['matplotlib'],
    'test': ['pytest'],
})


def install(name, dependencies=None, runner=None):
    # pip-install the requirements registered for name. runner receives the pip command line.
    if dependencies is None:
        dependencies = DEFAULT_DEPENDENCIES
    if runner is None:
        runner = subprocess.check_call
    if name not in dependencies:
        raise UnknownKeyError(f"Unknown package: {name}", context=dict(known=sorted(dependencies)))
    cmd = [sys.executable, "-m", "pip", "install"] + list(dependencies[name])
    logger.info(f"Installing {name}: {' '.join(cmd)}")
    return runner(cmd)
