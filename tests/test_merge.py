import logging

from covgate.config import DEFAULT_IGNORE
from covgate.discover import TEST, BinaryDescriptor
from covgate.merge import collect_fragments, merge_fragments
from covgate.report import summarize
from covgate.runner import ProfileFragment

from conftest import lcov


def fragment(path, name="t-0123456789abcdef"):
    return ProfileFragment(binary=BinaryDescriptor(path=path.parent / name, kind=TEST), path=path, token="1-0")


def write(path, text):
    path.write_text(text)
    return path


def test_disjoint_fragments_cover_everything(tmp_path):
    lines = range(1, 41)
    f1 = write(tmp_path / "f1", lcov({"/src/lib.rs": {n: (1 if n <= 20 else 0) for n in lines}}))
    f2 = write(tmp_path / "f2", lcov({"/src/lib.rs": {n: (1 if n > 20 else 0) for n in lines}}))
    result = merge_fragments([fragment(f1), fragment(f2)])
    assert summarize(result.model).percentage == 100.0
    assert result.warnings == ()
    assert result.merged == (f1, f2)


def test_file_seen_by_one_binary_is_kept(tmp_path):
    f1 = write(tmp_path / "f1", lcov({"/src/a.rs": {1: 1}}))
    f2 = write(tmp_path / "f2", lcov({"/src/b.rs": {1: 0, 2: 0}}))
    s = summarize(merge_fragments([fragment(f1), fragment(f2)]).model)
    assert (s.lines_hit, s.lines_found) == (1, 3)


def test_corrupt_fragment_is_skipped_and_logged(tmp_path, caplog):
    good = write(tmp_path / "good", lcov({"/src/a.rs": {1: 1, 2: 0}}))
    bad = write(tmp_path / "bad", "SF:/src/a.rs\nDA:2,1\n")
    with caplog.at_level(logging.WARNING, logger="covgate"):
        result = merge_fragments([fragment(good), fragment(bad, "crashy-0123456789abcdef")])
    assert summarize(result.model).percentage == 50.0
    assert len(result.warnings) == 1
    assert result.warnings[0].startswith("crashy-0123456789abcdef:")
    assert "truncated" in caplog.text


def test_empty_fragment_is_reported(tmp_path):
    empty = write(tmp_path / "empty", "")
    good = write(tmp_path / "good", lcov({"/src/a.rs": {1: 1}}))
    result = merge_fragments([fragment(empty), fragment(good)])
    assert result.empty == (empty,)
    assert result.warnings == ("t-0123456789abcdef: empty profile fragment",)


def test_ignore_patterns(tmp_path):
    f1 = write(tmp_path / "f1", lcov({
        "/home/ci/.cargo/registry/serde/lib.rs": {1: 0},
        "/work/examples/simulation.rs": {1: 0},
        "/work/src/lib.rs": {1: 1},
    }))
    result = merge_fragments([fragment(f1)], ignore=["*cargo*", "*example*"])
    assert list(result.model.files) == ["/work/src/lib.rs"]


def test_ignore_not_existing(tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "lib.rs").write_text("fn main() {}\n")
    f1 = write(tmp_path / "f1", lcov({"src/lib.rs": {1: 1}, "src/generated.rs": {1: 0}}))
    result = merge_fragments([fragment(f1)], source_root=tmp_path, ignore_not_existing=True)
    assert list(result.model.files) == [str(tmp_path.resolve() / "src" / "lib.rs")]


def test_collect_includes_leftovers(tmp_path):
    binary = BinaryDescriptor(path=tmp_path / "a-0123456789abcdef", kind=TEST)
    fresh = ProfileFragment(binary=binary, path=write(tmp_path / "test-a-0123456789abcdef-9-0.profraw", ""), token="9-0")
    old = write(tmp_path / "test-a-0123456789abcdef-1-0.profraw", "")
    stranger = write(tmp_path / "test-gone-0123456789abcdef-3-0.profraw", "")
    foreign = write(tmp_path / "Cargo.toml", "[package]\n")

    collected = collect_fragments(tmp_path, [fresh], [binary], "{kind}-{name}-{token}.profraw")
    assert collected[0] is fresh
    by_path = {f.path: f for f in collected[1:]}
    assert set(by_path) == {old, stranger}
    assert foreign not in by_path
    assert by_path[old].binary == binary
    assert by_path[stranger].binary is None
    assert by_path[stranger].label == "test-gone-0123456789abcdef-3-0.profraw"


def test_default_ignore_in_checkout_named_like_a_pattern(tmp_path):
    root = tmp_path / "example-app"
    (root / "src").mkdir(parents=True)
    (root / "src" / "lib.rs").write_text("pub fn f() {}\n")
    f1 = write(tmp_path / "f1", lcov({"src/lib.rs": {1: 1}, "/home/ci/.cargo/registry/dep.rs": {1: 0}}))
    result = merge_fragments([fragment(f1)], ignore=DEFAULT_IGNORE, source_root=root)
    assert summarize(result.model).percentage == 100.0
    assert list(result.model.files) == [str(root.resolve() / "src" / "lib.rs")]


def test_collect_skips_names_the_template_cannot_produce(tmp_path):
    write(tmp_path / "merged.profdata", "")
    write(tmp_path / "coverage.profraw", "")
    assert collect_fragments(tmp_path, [], (), "{kind}-{name}-{token}.profraw") == ()
