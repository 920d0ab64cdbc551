"""Saving and loading ensembles.

Two layouts, chosen by Ensemble.monolithic_storage:
  monolithic: <stem>.pickle holds {members, state_keys, monolithic_storage, version}
  split:      <stem>.pickle holds {state_keys, monolithic_storage, version, size}
              and member i (1-based) lives in <stem>_ensemble/<i>.pickle as {"data": member}
Saving over an existing stem first moves the old ensemble to <stem>-1 (recursively).
"""
import os
import enum
import pickle
import shutil
import logging
import tempfile
from os.path import join, exists, dirname, basename, splitext
from os import makedirs
from ensemble import Ensemble
from ensemble_member import EnsembleMember
from errors import UnsupportedVersionError, MissingMemberError

logger = logging.getLogger(__name__)

EXTENSION = 'pickle'
VERSION = '1.0.1'
SUPPORTED_VERSIONS = ('1.0.0', '1.0.1')


class StemStatus(enum.Enum):
    EXISTING = 'existing'
    FRESH = 'fresh'


def metadata_file(stem):
    return f"{stem}.{EXTENSION}"

def member_directory(stem):
    return f"{stem}_ensemble"

def member_file(folder, i):
    return join(folder, f"{i}.{EXTENSION}")


# --------------- Single files -----------------
def write_pickle_atomic(path, payload):
    # Temporary file in the target directory, then a rename, so readers never see a partial file
    folder = dirname(path) or '.'
    makedirs(folder, exist_ok=True)
    fd,tmp_path = tempfile.mkstemp(dir=folder, prefix=f".{basename(path)}.", suffix=".tmp")
    try:
        with os.fdopen(fd, 'wb') as f:
            pickle.dump(payload, f, protocol=pickle.HIGHEST_PROTOCOL)
        os.replace(tmp_path, path)
    except BaseException:
        if exists(tmp_path):
            os.remove(tmp_path)
        raise
    return

def read_pickle(path):
    with open(path, 'rb') as f:
        return pickle.load(f)

def save_member(folder, i, member):
    write_pickle_atomic(member_file(folder, i), dict({'data': member}))
    return

def load_member(folder, i):
    path = member_file(folder, i)
    if not exists(path):
        raise MissingMemberError(f"Member file {path} does not exist", context=dict(folder=folder, index=i))
    return read_pickle(path)['data']

def list_member_indices(folder):
    # Sorted indices of the files in folder whose names parse as positive integers
    indices = []
    if not exists(folder):
        return indices
    for file_name in os.listdir(folder):
        stem,ext = splitext(file_name)
        if ext != f".{EXTENSION}":
            continue
        try:
            i = int(stem)
        except ValueError:
            continue
        if i > 0:
            indices.append(i)
    return sorted(indices)

def check_member_indices(folder, N):
    indices = list_member_indices(folder)
    if indices != list(range(1, N+1)):
        missing = sorted(set(range(1, N+1)) - set(indices))
        extra = sorted(set(indices) - set(range(1, N+1)))
        raise MissingMemberError(
                f"Member directory {folder} does not hold exactly members 1..{N}",
                context=dict(missing=missing, extra=extra))
    return


# --------------- Collisions -----------------
def check_stem(stem):
    if exists(metadata_file(stem)):
        return StemStatus.EXISTING
    return StemStatus.FRESH

def backup_existing(stem):
    # Move whatever is saved at stem to stem-1, first moving anything already at stem-1
    stem_new = f"{stem}-1"
    logger.warning(f"{metadata_file(stem)} already exists. Moving existing version to {metadata_file(stem_new)}")
    move_ensemble(stem, stem_new)
    return stem_new


# --------------- Members -----------------
def save_ensemble_members(ensemble, folder, existing_member_directory=None, existing_merge=False):
    """Write the members of ensemble to folder/<i>.pickle.

    With existing_member_directory, the member files found there are used instead of the
    in-memory members: either moved over as they are, or (existing_merge=True) merged over
    copies of the in-memory members, with the on-disk fields winning.
    """
    if existing_member_directory is not None and os.path.abspath(existing_member_directory) == os.path.abspath(folder):
        raise ValueError(f"Existing member directory {folder} is the directory being saved to")
    if existing_member_directory is None:
        if exists(folder):
            shutil.rmtree(folder)
        makedirs(folder)
        for (i, em) in enumerate(ensemble.members, start=1):
            save_member(folder, i, em)
        return
    if not existing_merge:
        if exists(folder):
            shutil.rmtree(folder)
        makedirs(dirname(folder) or '.', exist_ok=True)
        shutil.move(existing_member_directory, folder)
        return
    makedirs(folder, exist_ok=True)
    for (i, em) in enumerate(ensemble.members, start=1):
        em_new = load_member(existing_member_directory, i)
        save_member(folder, i, EnsembleMember(em).merged(em_new))
        os.remove(member_file(existing_member_directory, i))
    remove_member_directory(existing_member_directory)
    return

def load_ensemble_members(folder, N):
    return [load_member(folder, i) for i in range(1, N+1)]

def remove_member_directory(folder, N=None):
    # Clean up a scratch directory; failure to remove it is logged but does not fail the save
    if N is not None:
        for i in range(1, N+1):
            path = member_file(folder, i)
            if exists(path):
                os.remove(path)
    try:
        os.rmdir(folder)
    except OSError as exc:
        logger.error(f"Could not remove member directory {folder}: {exc}")
    return


# --------------- Ensembles -----------------
def save_ensemble(ensemble, stem, existing_member_directory=None, existing_merge=False, reset_state_keys=False):
    """Save ensemble at stem, in the layout given by ensemble.monolithic_storage.

    existing_member_directory, existing_merge: see save_ensemble_members.
    reset_state_keys: take the state keys from the first saved member's keys instead of
        from ensemble. Without it, ensemble's state keys are kept if the saved members still
        carry them.
    """
    if check_stem(stem) is StemStatus.EXISTING:
        backup_existing(stem)
    if dirname(stem):
        makedirs(dirname(stem), exist_ok=True)
    N = len(ensemble.members)
    if ensemble.monolithic_storage:
        members = ensemble.members
        if existing_member_directory is not None:
            members = load_ensemble_members(existing_member_directory, N)
            if existing_merge:
                members = [EnsembleMember(em).merged(em_new) for (em, em_new) in zip(ensemble.members, members)]
        state_keys = _saved_state_keys(ensemble, members[:1], reset_state_keys)
        write_pickle_atomic(metadata_file(stem), dict({
            'members': members,
            'state_keys': state_keys,
            'monolithic_storage': True,
            'version': VERSION,
            }))
        if existing_member_directory is not None:
            remove_member_directory(existing_member_directory, N)
        return
    folder = member_directory(stem)
    save_ensemble_members(ensemble, folder, existing_member_directory=existing_member_directory, existing_merge=existing_merge)
    check_member_indices(folder, N)
    first = [load_member(folder, 1)] if N > 0 else []
    state_keys = _saved_state_keys(ensemble, first, reset_state_keys)
    write_pickle_atomic(metadata_file(stem), dict({
        'state_keys': state_keys,
        'monolithic_storage': False,
        'version': VERSION,
        'size': N,
        }))
    return

def _saved_state_keys(ensemble, first, reset_state_keys):
    if len(first) == 0:
        return list(ensemble.state_keys)
    if reset_state_keys or not all(key in first[0] for key in ensemble.state_keys):
        return sorted(first[0].keys())
    return list(ensemble.state_keys)

def read_metadata(stem):
    data = read_pickle(metadata_file(stem))
    version = data.get('version', None)
    if version not in SUPPORTED_VERSIONS:
        raise UnsupportedVersionError(f"Unsupported ensemble file version {version!r}", context=dict(stem=stem))
    return data

def load_ensemble(stem):
    data = read_metadata(stem)
    if data['version'] == '1.0.0' or data['monolithic_storage']:
        return Ensemble(data['members'], data['state_keys'], monolithic_storage=True)
    folder = member_directory(stem)
    if 'size' in data:
        N = data['size']
    else:
        N = max(list_member_indices(folder), default=0)
    check_member_indices(folder, N)
    members = load_ensemble_members(folder, N)
    return Ensemble(members, data['state_keys'], monolithic_storage=False)

def move_ensemble(stem, stem_new):
    data = read_metadata(stem)
    if check_stem(stem_new) is StemStatus.EXISTING:
        backup_existing(stem_new)
    if dirname(stem_new):
        makedirs(dirname(stem_new), exist_ok=True)
    shutil.move(metadata_file(stem), metadata_file(stem_new))
    if data['version'] != '1.0.0' and not data['monolithic_storage']:
        if exists(member_directory(stem_new)):
            shutil.rmtree(member_directory(stem_new))
        shutil.move(member_directory(stem), member_directory(stem_new))
    return
