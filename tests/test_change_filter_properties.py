"""Property-based tests for the exclusion rules of a replica.

Feature: folder-sync
"""

from hypothesis import given
from hypothesis import strategies as st

from filesync.sync.change_filter import ChangeFilter
from filesync.sync.replica import ID_FILE_NAME, METADATA_DIR_NAME, TEMP_FILE_SUFFIX

path_segment = st.text(
    alphabet=st.characters(whitelist_categories=("Ll", "Lu", "Nd"), whitelist_characters="_-."),
    min_size=1,
    max_size=12,
).filter(lambda s: s not in (".", "..", METADATA_DIR_NAME))

relative_dirs = st.lists(path_segment, min_size=0, max_size=3).map("/".join)


@given(
    directory=relative_dirs,
    patterns=st.lists(st.sampled_from(["*.log", "*.bak", "draft*", "x?y"]), max_size=3),
)
def test_id_file_always_excluded(directory: str, patterns: list[str]) -> None:
    """Property: whatever the configured patterns, the id file is never user data."""
    change_filter = ChangeFilter(file_name_excludes=patterns)
    path = f"{directory}/{ID_FILE_NAME}" if directory else ID_FILE_NAME

    assert change_filter.excludes_file(path)


@given(name=path_segment)
def test_metadata_directory_always_excluded(name: str) -> None:
    """Property: tracking files and the recycle area are never enumerated."""
    change_filter = ChangeFilter()

    assert change_filter.excludes_directory(METADATA_DIR_NAME)
    assert change_filter.excludes_file(f"{METADATA_DIR_NAME}/recycle/20240101T000000/{name}")


@given(name=path_segment)
def test_temporary_copies_excluded(name: str) -> None:
    assert ChangeFilter().excludes_file(f"docs/.{name}.0a1b2c3d{TEMP_FILE_SUFFIX}")


@given(directory=relative_dirs, stem=path_segment)
def test_file_name_pattern_matches_at_any_depth(directory: str, stem: str) -> None:
    change_filter = ChangeFilter(file_name_excludes=["*.tmp"])
    prefix = f"{directory}/" if directory else ""

    assert change_filter.excludes_file(f"{prefix}{stem}.tmp")
    assert not change_filter.excludes_file(f"{prefix}{stem}.tmpx")


def test_subdirectory_exclude_covers_contents_only() -> None:
    change_filter = ChangeFilter(subdirectory_excludes=["build", "cache/*"])

    assert change_filter.excludes_file("build/out.bin")
    assert change_filter.excludes_file("build/nested/out.bin")
    assert change_filter.excludes_file("cache/a/b.txt")
    assert not change_filter.excludes_file("build.txt")
    assert not change_filter.excludes_file("src/build/out.bin")


def test_metadata_directory_name_only_reserved_at_root() -> None:
    assert not ChangeFilter().excludes_file(f"projects/{METADATA_DIR_NAME}/notes.txt")
