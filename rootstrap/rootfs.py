"""Union filesystem reconstruction.

Image layers are applied one at a time, bottom to top, into a single output
directory. Once a layer's tar stream has been extracted, the whole output
tree is scanned for whiteout markers, which record that an upper layer
deleted something from the layers below it. Some light reading on how this
works...

https://github.com/opencontainers/image-spec/blob/main/layer.md#whiteouts
https://www.madebymikal.com/interpreting-whiteout-files-in-docker-image-layers/

A marker <dir>/.wh.<name> deletes <dir>/<name>, which may be a file or an
entire directory tree. An opaque marker <dir>/.wh..wh..opq hides everything
the lower layers put in <dir>, while keeping what this layer wrote there.
"""

import logging
import os
import shutil
import stat
import tarfile

from rootstrap import constants
from rootstrap import util


LOG = logging.getLogger(__name__)
LOG.setLevel(logging.INFO)

# As many symlinks as Linux follows before giving up with ELOOP
MAX_SYMLINK_HOPS = 40


class OutputConflictError(util.RootstrapError):
    pass


def check_output(output_dir):
    """Ensure the output path can be used, before doing any real work.

    Raises:
        OutputConflictError: If the path exists but is not a directory.
    """
    if not os.path.lexists(output_dir):
        return
    if not os.path.isdir(output_dir):
        raise OutputConflictError(
            '%s exists and is not a directory' % output_dir)
    if os.listdir(output_dir):
        LOG.warning('Output directory %s is not empty, files from earlier '
                    'runs may conflict with this image' % output_dir)


def create_output(output_dir):
    check_output(output_dir)
    os.makedirs(output_dir, exist_ok=True)


def _is_root():
    return hasattr(os, 'geteuid') and os.geteuid() == 0


def _add_owner_access(path):
    st = os.lstat(path)
    wanted = stat.S_IRUSR | stat.S_IWUSR | stat.S_IXUSR
    if st.st_mode & wanted != wanted:
        os.chmod(path, stat.S_IMODE(st.st_mode) | wanted)


def _make_tree_removable(path):
    _add_owner_access(path)
    for dirpath, dirnames, _ in os.walk(path):
        for d in dirnames:
            full = os.path.join(dirpath, d)
            if not os.path.islink(full):
                _add_owner_access(full)


def _remove_once(path, st):
    if stat.S_ISDIR(st.st_mode):
        shutil.rmtree(path)
    else:
        os.unlink(path)


def remove_path(path):
    """Delete a file, symlink or directory tree.

    Read-only directories are made writable as needed. A path which does
    not exist is ignored.
    """
    try:
        st = os.lstat(path)
    except FileNotFoundError:
        return

    try:
        _remove_once(path, st)
        return
    except PermissionError:
        if _is_root():
            raise

    # Unprivileged extraction preserves read-only directory modes, which
    # then get in the way of deleting their contents.
    parent = os.path.dirname(path)
    parent_mode = stat.S_IMODE(os.lstat(parent).st_mode)
    _add_owner_access(parent)
    try:
        if stat.S_ISDIR(st.st_mode):
            _make_tree_removable(path)
        _remove_once(path, st)
    finally:
        os.chmod(parent, parent_mode)


def _split(path):
    return [p for p in path.split('/') if p not in ('', '.')]


def resolve_in_root(output_dir, name):
    """Resolve the parent directories of name as if output_dir were /.

    Symlinks already extracted by earlier layers are followed, with absolute
    targets taken relative to output_dir rather than the host. The final
    component is not followed.

    Returns:
        The resolved path relative to output_dir, or None if a symlink
        climbs above output_dir or the links loop.
    """
    parts = _split(name)
    resolved = []
    hops = 0
    while parts:
        part = parts.pop(0)
        if part == '..':
            if not resolved:
                return None
            resolved.pop()
            continue

        candidate = os.path.join(output_dir, *resolved, part)
        if parts and os.path.islink(candidate):
            hops += 1
            if hops > MAX_SYMLINK_HOPS:
                return None
            link = os.readlink(candidate)
            if link.startswith('/'):
                resolved = []
            parts = _split(link) + parts
            continue

        resolved.append(part)
    return '/'.join(resolved)


def _open_parent(output_dir, name, opened):
    """Give the owner write access to the directory name will be written in.

    Unprivileged extraction keeps read-only directory modes from earlier
    layers. The original mode is recorded in opened so it can be restored.
    """
    parent = os.path.dirname(name)
    while parent and not os.path.lexists(os.path.join(output_dir, parent)):
        parent = os.path.dirname(parent)
    if parent in opened:
        return

    path = os.path.join(output_dir, parent) if parent else output_dir
    st = os.lstat(path)
    if not stat.S_ISDIR(st.st_mode):
        return
    wanted = stat.S_IWUSR | stat.S_IXUSR
    if st.st_mode & wanted != wanted:
        opened[parent] = stat.S_IMODE(st.st_mode)
        _add_owner_access(path)


def _record_path(written, name):
    """Record a member and all its parent directories as written."""
    while name and name not in written:
        written.add(name)
        name = os.path.dirname(name)


def _clear_path(target, is_dir):
    """Make room for a new entry at target.

    Directories merge with an existing directory. Anything else replaces
    whatever was there, including read-only files from earlier layers.
    """
    try:
        st = os.lstat(target)
    except FileNotFoundError:
        return
    if is_dir and stat.S_ISDIR(st.st_mode):
        return
    remove_path(target)


def extract_layer(stream, output_dir):
    """Extract a layer tar stream into output_dir.

    File modes, symlinks, hard links and directories are preserved as
    stored, including setuid, setgid and sticky bits. Member names are
    sanitized with the standard library's tar extraction filter, and
    symlinks from earlier layers are resolved inside output_dir, so nothing
    is written outside it.

    Returns:
        The set of paths (relative to output_dir) this layer wrote,
        including their parent directories.
    """
    written = set()
    declared_dirs = set()
    opened = {}
    is_root = _is_root()

    def layer_filter(member, dest_path):
        name = os.path.normpath(member.name.lstrip('/'))
        if name == '..' or name.startswith('../'):
            # The tar filter rejects this with OutsideDestinationError
            return tarfile.tar_filter(member, dest_path)

        if (member.ischr() or member.isblk()) and not is_root:
            LOG.warning('Skipping device node %s, creating devices requires '
                        'root' % name)
            return None

        if name != '.':
            resolved = resolve_in_root(output_dir, name)
            if resolved is None:
                LOG.warning('Skipping %s, its parent directory is a symlink '
                            'which points outside the output directory'
                            % name)
                return None
            if resolved != name:
                LOG.debug('Writing %s to %s through a symlink'
                          % (name, resolved))
                member = member.replace(name=resolved, deep=False)

            if member.islnk():
                link = resolve_in_root(
                    output_dir, os.path.normpath(member.linkname.lstrip('/')))
                if link is None:
                    LOG.warning('Skipping hard link %s, its target is outside '
                                'the output directory' % resolved)
                    return None
                member = member.replace(linkname=link, deep=False)

            _clear_path(os.path.join(output_dir, resolved), member.isdir())
            if not is_root:
                _open_parent(output_dir, resolved, opened)
            if member.isdir():
                declared_dirs.add(resolved)
            _record_path(written, resolved)

        filtered = tarfile.tar_filter(member, dest_path)
        if filtered is None:
            return None
        # The tar filter clears setuid, setgid, sticky and group/other write
        return filtered.replace(mode=member.mode, deep=False)

    try:
        with tarfile.open(fileobj=stream, mode='r|') as tar:
            tar.extractall(output_dir, numeric_owner=True,
                           filter=layer_filter)
    finally:
        # Directories this layer declares get their mode from the tar
        for parent, mode in opened.items():
            if parent not in declared_dirs:
                os.chmod(os.path.join(output_dir, parent) if parent
                         else output_dir, mode)
    return written


def find_whiteouts(output_dir):
    """Return the path of every whiteout marker in the output tree."""
    markers = []
    for dirpath, dirnames, filenames in os.walk(output_dir):
        for name in sorted(dirnames + filenames):
            if name.startswith(constants.WHITEOUT_PREFIX):
                markers.append(os.path.join(dirpath, name))
    return markers


def _purge_opaque(directory, output_dir, written):
    # Keep only what this layer wrote, all the way down
    removed = 0
    for name in os.listdir(directory):
        path = os.path.join(directory, name)
        rel = os.path.relpath(path, output_dir)
        if rel not in written:
            remove_path(path)
            removed += 1
        elif os.path.isdir(path) and not os.path.islink(path):
            removed += _purge_opaque(path, output_dir, written)
    return removed


def purge_whiteouts(output_dir, layer_paths=None):
    """Apply and remove every whiteout marker in the output tree.

    Args:
        output_dir: The directory the layers are being applied to.
        layer_paths: The set of relative paths written by the layer just
            extracted, as returned by extract_layer(). This is needed to
            honour opaque whiteouts. Without it an opaque marker is simply
            removed.

    Returns:
        The number of markers processed.
    """
    markers = find_whiteouts(output_dir)
    for marker in markers:
        dirname, filename = os.path.split(marker)

        if filename == constants.WHITEOUT_OPAQUE and layer_paths is not None:
            remove_path(marker)
            removed = _purge_opaque(dirname, output_dir, layer_paths)
            LOG.debug('Opaque whiteout %s hid %d entries'
                      % (os.path.relpath(marker, output_dir), removed))
            continue

        remove_path(marker)
        target_name = filename[len(constants.WHITEOUT_PREFIX):]
        if target_name in ('', '.', '..'):
            LOG.warning('Ignoring malformed whiteout %s' % marker)
            continue
        target = os.path.join(dirname, target_name)
        remove_path(target)
        LOG.debug('Whiteout removed %s'
                  % os.path.relpath(target, output_dir))

    if markers:
        LOG.info('Processed %d whiteouts' % len(markers))
    return len(markers)


def apply_layer(stream, output_dir):
    """Extract a layer on top of output_dir and then process its whiteouts.

    Returns:
        The number of whiteout markers processed.
    """
    written = extract_layer(stream, output_dir)
    return purge_whiteouts(output_dir, layer_paths=written)
