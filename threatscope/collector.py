"""Source collection: clone or open a codebase and bound the file set to analyze."""

import logging
import os
import re
import shutil
import tempfile
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional

from git import GitCommandError, Repo

from .errors import CollectionError, ScanError

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 50 * 1024
MAX_FILES = 500

SKIP_DIRS = frozenset({
    'node_modules', '.git', '__pycache__', '.next', 'dist', 'build',
    '.venv', 'venv', 'vendor', '.terraform', '.cache', 'coverage',
    '.idea', '.vscode', 'target', 'bin', 'obj',
})

ALLOWED_DOTFILES = frozenset({'.env', '.env.example'})
ALLOWED_DOTDIRS = frozenset({'.github'})

SKIP_EXTENSIONS = frozenset({
    '.png', '.jpg', '.jpeg', '.gif', '.svg', '.ico', '.woff', '.woff2',
    '.ttf', '.eot', '.mp3', '.mp4', '.zip', '.tar', '.gz', '.pdf',
    '.lock', '.map',
})

# Compound suffixes that os.path.splitext cannot see
SKIP_SUFFIXES = ('.min.js', '.min.css')

LANGUAGE_MAP = {
    '.ts': 'TypeScript', '.tsx': 'TypeScript',
    '.js': 'JavaScript', '.jsx': 'JavaScript',
    '.py': 'Python',
    '.go': 'Go',
    '.rs': 'Rust',
    '.java': 'Java',
    '.cs': 'C#',
    '.c': 'C', '.h': 'C',
    '.cpp': 'C++', '.hpp': 'C++',
    '.rb': 'Ruby',
    '.php': 'PHP',
    '.swift': 'Swift',
    '.kt': 'Kotlin',
    '.tf': 'Terraform/HCL',
    '.yaml': 'YAML', '.yml': 'YAML',
    '.sql': 'SQL',
    '.sh': 'Shell',
}


@dataclass(frozen=True)
class FrameworkSignature:
    """A manifest file (and optional dependency key) that identifies a framework."""
    file: str
    framework: str
    type: str
    key: Optional[str] = None


FRAMEWORK_SIGNATURES = (
    FrameworkSignature('package.json', 'Express.js', 'backend', key='express'),
    FrameworkSignature('package.json', 'Fastify', 'backend', key='fastify'),
    FrameworkSignature('package.json', 'Next.js', 'frontend', key='next'),
    FrameworkSignature('package.json', 'React', 'frontend', key='react'),
    FrameworkSignature('package.json', 'Vue.js', 'frontend', key='vue'),
    FrameworkSignature('package.json', 'Angular', 'frontend', key='angular'),
    FrameworkSignature('package.json', 'NestJS', 'backend', key='nestjs'),
    FrameworkSignature('requirements.txt', 'Flask', 'backend', key='flask'),
    FrameworkSignature('requirements.txt', 'Django', 'backend', key='django'),
    FrameworkSignature('requirements.txt', 'FastAPI', 'backend', key='fastapi'),
    FrameworkSignature('go.mod', 'Gin', 'backend', key='gin'),
    FrameworkSignature('go.mod', 'Fiber', 'backend', key='fiber'),
    FrameworkSignature('Cargo.toml', 'Actix', 'backend', key='actix'),
    FrameworkSignature('pom.xml', 'Spring Boot', 'backend', key='spring'),
    FrameworkSignature('Dockerfile', 'Docker', 'infra'),
    FrameworkSignature('docker-compose.yml', 'Docker Compose', 'infra'),
    FrameworkSignature('docker-compose.yaml', 'Docker Compose', 'infra'),
    FrameworkSignature('terraform.tf', 'Terraform', 'infra'),
    FrameworkSignature('.github/workflows', 'GitHub Actions', 'infra'),
)

ENTRY_POINT_PATTERNS = (
    re.compile(r'^(?:src/)?(?:index|main|app|server)\.[tj]sx?$'),
    re.compile(r'^(?:src/)?(?:index|main|app|server)\.py$'),
    re.compile(r'^(?:cmd/|main).*\.go$'),
    re.compile(r'^(?:src/)?main\.rs$'),
    re.compile(r'routes?/', re.IGNORECASE),
    re.compile(r'controllers?/', re.IGNORECASE),
    re.compile(r'api/', re.IGNORECASE),
    re.compile(r'handlers?/', re.IGNORECASE),
)


@dataclass
class CollectedSource:
    """A bounded file set rooted at a local directory."""
    root: Path
    files: list[str]
    source: str
    truncated: bool = False
    _cache: dict[str, str] = field(default_factory=dict, repr=False)

    def read_text(self, rel_path: str) -> str:
        """Read a collected file as UTF-8. Raises ScanError if it cannot be read."""
        if rel_path in self._cache:
            return self._cache[rel_path]
        try:
            content = (self.root / rel_path).read_text(encoding='utf-8')
        except (OSError, UnicodeDecodeError) as e:
            raise ScanError(f"Cannot read {rel_path}: {e}") from e
        self._cache[rel_path] = content
        return content


def normalize_repo_url(url: str) -> str:
    """Normalize a repository locator to a cloneable https URL ending in .git."""
    git_url = (url or '').strip()
    if not git_url:
        raise CollectionError("Repository URL is empty")
    if not git_url.startswith('http') and not git_url.startswith('git@'):
        git_url = f'https://{git_url}'
    if not git_url.endswith('.git'):
        git_url = f'{git_url}.git'
    return git_url


def _classify_git_error(error: GitCommandError) -> str:
    stderr = str(error.stderr or error).lower()
    if 'not found' in stderr or 'does not exist' in stderr or 'does not appear to be a git repository' in stderr:
        return 'repository not found'
    if 'authentication' in stderr or 'permission denied' in stderr or 'could not read username' in stderr:
        return 'authentication failed'
    if 'could not resolve host' in stderr or 'timed out' in stderr or 'unable to access' in stderr:
        return 'network error'
    return 'clone failed'


def clone_repository(url: str, dest: Path) -> None:
    """Shallow-clone a repository into dest."""
    try:
        Repo.clone_from(url, str(dest), depth=1)
    except GitCommandError as e:
        reason = _classify_git_error(e)
        raise CollectionError(f"Could not clone {url}: {reason}") from e


def _skip_file(name: str) -> bool:
    lower = name.lower()
    if lower.endswith(SKIP_SUFFIXES):
        return True
    return os.path.splitext(lower)[1] in SKIP_EXTENSIONS


def walk_files(root: Path, max_files: int = MAX_FILES, max_file_size: int = MAX_FILE_SIZE) -> tuple[list[str], bool]:
    """Walk root and return (relative POSIX paths, truncated).

    The walk stops as soon as max_files paths have been collected.
    """
    root = Path(root)
    files: list[str] = []
    truncated = False

    def _walk(directory: Path) -> bool:
        nonlocal truncated
        try:
            entries = sorted(os.scandir(directory), key=lambda e: e.name)
        except OSError as e:
            logger.debug("Skipping unreadable directory %s: %s", directory, e)
            return True
        for entry in entries:
            if len(files) >= max_files:
                truncated = True
                return False
            if entry.name in SKIP_DIRS:
                continue
            hidden = entry.name.startswith('.')
            if hidden and entry.name not in ALLOWED_DOTFILES | ALLOWED_DOTDIRS:
                continue
            try:
                if entry.is_dir(follow_symlinks=False):
                    if hidden and entry.name not in ALLOWED_DOTDIRS:
                        continue
                    if not _walk(Path(entry.path)):
                        return False
                    continue
                if not entry.is_file(follow_symlinks=False) or _skip_file(entry.name):
                    continue
                if entry.stat().st_size > max_file_size:
                    continue
            except OSError:
                continue
            files.append(Path(entry.path).relative_to(root).as_posix())
        return True

    _walk(root)
    if truncated:
        logger.info("File budget of %d reached; remaining files in %s were not collected", max_files, root)
    return files, truncated


def detect_languages(files: list[str]) -> list[str]:
    langs: list[str] = []
    for f in files:
        lang = LANGUAGE_MAP.get(os.path.splitext(f)[1].lower())
        if lang and lang not in langs:
            langs.append(lang)
    return langs


def detect_frameworks(root: Path, files: list[str]) -> list[str]:
    detected: list[str] = []
    for sig in FRAMEWORK_SIGNATURES:
        match = next(
            (f for f in files if f == sig.file or f.endswith(f'/{sig.file}') or f.startswith(sig.file)),
            None,
        )
        if match is None or sig.framework in detected:
            continue
        if sig.key is None:
            detected.append(sig.framework)
            continue
        try:
            content = (Path(root) / match).read_text(encoding='utf-8')
        except (OSError, UnicodeDecodeError):
            continue
        if sig.key.lower() in content.lower():
            detected.append(sig.framework)
    return detected


def find_entry_points(files: list[str]) -> list[str]:
    return [f for f in files if any(p.search(f) for p in ENTRY_POINT_PATTERNS)]


@contextmanager
def collect_repository(
    url: str,
    session_id: Optional[str] = None,
    max_files: int = MAX_FILES,
    max_file_size: int = MAX_FILE_SIZE,
) -> Iterator[CollectedSource]:
    """Clone a repository into a session-scoped temp directory.

    The directory is removed when the context exits, whether it exits
    normally, with an error or through cancellation.
    """
    git_url = normalize_repo_url(url)
    session_id = session_id or uuid.uuid4().hex[:12]
    tmp_dir = Path(tempfile.mkdtemp(prefix=f'threatscope-{session_id}-'))
    try:
        logger.info("Cloning %s into %s", git_url, tmp_dir)
        clone_repository(git_url, tmp_dir / 'repo')
        repo_root = tmp_dir / 'repo'
        files, truncated = walk_files(repo_root, max_files, max_file_size)
        yield CollectedSource(root=repo_root, files=files, source=url, truncated=truncated)
    finally:
        shutil.rmtree(tmp_dir, ignore_errors=True)
        logger.debug("Removed working directory %s", tmp_dir)


@contextmanager
def collect_local(
    path: str | Path,
    max_files: int = MAX_FILES,
    max_file_size: int = MAX_FILE_SIZE,
) -> Iterator[CollectedSource]:
    """Open an existing local directory. Nothing is cloned or removed."""
    root = Path(path).resolve()
    if not root.exists():
        raise CollectionError(f"Source path does not exist: {root}")
    if not root.is_dir():
        raise CollectionError(f"Source path is not a directory: {root}")
    files, truncated = walk_files(root, max_files, max_file_size)
    yield CollectedSource(root=root, files=files, source=str(path), truncated=truncated)
