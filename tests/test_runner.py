import pytest

from covgate.config import GateConfig
from covgate.discover import TEST, BinaryDescriptor
from covgate.errors import ExecutionError
from covgate.runner import clean_fragments, fragment_path, run_binaries

from conftest import fake_binary, lcov, write_script


def descriptor(path, kind=TEST, args=()):
    return BinaryDescriptor(path=path, kind=kind, args=tuple(args))


def test_each_invocation_gets_its_own_fragment(deps, make_config):
    a = fake_binary(deps / "a-0123456789abcdef", lcov({"/src/a.rs": {1: 1}}))
    b = fake_binary(deps / "b-0123456789abcdef", lcov({"/src/b.rs": {2: 1}}))

    fragments = run_binaries([descriptor(a), descriptor(b), descriptor(a)], make_config())

    paths = [f.path for f in fragments]
    assert len(set(paths)) == 3
    assert all(p.exists() for p in paths)
    assert [f.binary.path for f in fragments] == [a, b, a]
    assert "SF:/src/b.rs" in paths[1].read_text()


def test_fragment_names_follow_template(deps, make_config):
    config = make_config(fragment_template="cov-{name}-{token}.info")
    binary = descriptor(deps / "a-0123456789abcdef")
    path = fragment_path(config, binary, "42-0")
    assert path.name == "cov-a-0123456789abcdef-42-0.info"
    assert path.parent == config.fragments.resolve()


def test_failing_binary_still_yields_fragment(deps, make_config):
    a = fake_binary(deps / "a-0123456789abcdef", lcov({"/src/a.rs": {1: 1}}), exit_code=101)
    (fragment,) = run_binaries([descriptor(a)], make_config())
    assert fragment.exit_code == 101
    assert fragment.failed
    assert "DA:1,1" in fragment.path.read_text()


def test_binary_that_never_flushes_leaves_empty_fragment(deps, make_config):
    a = fake_binary(deps / "a-0123456789abcdef", profile="", exit_code=0)
    (fragment,) = run_binaries([descriptor(a)], make_config())
    assert fragment.path.exists()
    assert fragment.path.read_bytes() == b""


def test_signal_death_is_recorded(deps, make_config):
    a = write_script(deps / "a-0123456789abcdef", "kill -9 $$\n")
    (fragment,) = run_binaries([descriptor(a)], make_config())
    assert fragment.death_signal == 9
    assert fragment.exit_code == 137


def test_missing_binary_is_fatal(deps, make_config):
    with pytest.raises(ExecutionError, match="cannot launch"):
        run_binaries([descriptor(deps / "ghost-0123456789abcdef")], make_config())


def test_timeout_is_fatal(deps, make_config):
    slow = fake_binary(deps / "slow-0123456789abcdef", sleep=5)
    with pytest.raises(ExecutionError, match="timed out"):
        run_binaries([descriptor(slow)], make_config(timeout=0.5))


def test_parallel_run_keeps_input_order(deps, make_config):
    binaries = [
        descriptor(fake_binary(deps / f"t{i}-0123456789abcdef", lcov({f"/src/{i}.rs": {1: 1}})))
        for i in range(4)
    ]
    fragments = run_binaries(binaries, make_config(jobs=3))
    assert [f.binary for f in fragments] == binaries
    for i, frag in enumerate(fragments):
        assert f"SF:/src/{i}.rs" in frag.path.read_text()


def test_parallel_timeout_is_fatal(deps, make_config):
    quick = fake_binary(deps / "quick-0123456789abcdef", lcov({"/src/a.rs": {1: 1}}))
    slow = fake_binary(deps / "slow-0123456789abcdef", sleep=5)
    with pytest.raises(ExecutionError, match="slow"):
        run_binaries([descriptor(quick), descriptor(slow)], make_config(jobs=2, timeout=0.5))


def test_binaries_run_in_source_root(project, deps, make_config):
    a = write_script(deps / "a-0123456789abcdef", 'pwd -P > "$LLVM_PROFILE_FILE"\n')
    (fragment,) = run_binaries([descriptor(a)], make_config())
    assert fragment.path.read_text().strip() == str(project.resolve())


def test_clean_removes_stale_fragments(tmp_path):
    pattern = GateConfig().fragment_regex
    (tmp_path / "test-a-0123456789abcdef-1-0.profraw").write_text("stale")
    (tmp_path / "example-sim-1-1.profraw").write_text("stale")
    (tmp_path / "merged.profdata").write_text("keep")
    (tmp_path / "notes.txt").write_text("keep")
    assert clean_fragments(tmp_path, pattern) == 2
    assert sorted(p.name for p in tmp_path.iterdir()) == ["merged.profdata", "notes.txt"]
    assert clean_fragments(tmp_path / "missing") == 0
