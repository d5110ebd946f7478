"""
Tests for the trustc command line driver
"""
import subprocess
from pathlib import Path

import pytest

import trustc
from trustc import ToolchainError, main, verify_ir


TRIPLE = "x86_64-unknown-linux-gnu"


@pytest.fixture
def hello(tmp_path):
    path = tmp_path / "hello.trust"
    path.write_text('Integer x = 2 + 3;\nprint(x);\nprint("hi");\n', encoding="utf-8")
    return path


@pytest.fixture
def fake_cc(monkeypatch):
    """
    Replace the native compiler call; records the command and the IR it was given.
    """
    calls = []

    def run(cmd, check=False):
        calls.append({"cmd": cmd, "ir": Path(cmd[1]).read_text(encoding="utf-8")})
        return subprocess.CompletedProcess(cmd, 0)

    monkeypatch.setattr(trustc.subprocess, "run", run)
    return calls


def test_missing_argument_is_usage_error(capsys):
    assert main([]) == 1
    assert "error:" in capsys.readouterr().err


def test_unreadable_source(tmp_path, capsys):
    assert main([str(tmp_path / "missing.trust")]) == 1
    assert "error: unable to read source file" in capsys.readouterr().err


def test_emit_ir_to_file(hello, tmp_path):
    out = tmp_path / "hello.ll"
    assert main([str(hello), "--emit-ir", str(out)]) == 0
    text = out.read_text(encoding="utf-8")
    assert 'define i32 @"main"()' in text
    assert 'c"5\\0a\\00"' in text


def test_emit_ir_to_stdout(hello, capsys):
    assert main([str(hello), "--emit-ir", "-"]) == 0
    assert 'c"hi\\0a\\00"' in capsys.readouterr().out


def test_compile_error_reports_line(tmp_path, capsys):
    path = tmp_path / "bad.trust"
    path.write_text("Integer x = 1;\nprint(y);\n", encoding="utf-8")
    out = tmp_path / "bad.ll"
    assert main([str(path), "--emit-ir", str(out)]) == 1
    err = capsys.readouterr().err
    assert "Building failed on 2 line:" in err
    assert "unable to resolve variable 'y'" in err
    assert not out.exists()


def test_keep_going_reports_every_error(tmp_path, capsys):
    path = tmp_path / "bad.trust"
    path.write_text("print(y);\nprint(1);\nBool b = maybe;\n", encoding="utf-8")
    assert main([str(path), "--emit-ir", "-", "--keep-going"]) == 1
    err = capsys.readouterr().err
    assert "Building failed on 1 line:" in err
    assert "Building failed on 3 line:" in err


def test_native_build_invokes_compiler(hello, fake_cc):
    assert main([str(hello), "--target-triple", TRIPLE]) == 0
    assert len(fake_cc) == 1
    cmd = fake_cc[0]["cmd"]
    assert cmd[0] == "clang"
    assert cmd[2:] == ["-o", str(hello.with_suffix(""))]
    assert f'target triple = "{TRIPLE}"' in fake_cc[0]["ir"]
    # the scratch directory is gone once the build returns
    assert not Path(cmd[1]).parent.exists()


def test_output_and_compiler_options(hello, tmp_path, fake_cc):
    out = tmp_path / "bin" / "prog"
    assert main([str(hello), "-o", str(out), "--cc", "clang-18", "--target-triple", TRIPLE]) == 0
    assert fake_cc[0]["cmd"][0] == "clang-18"
    assert fake_cc[0]["cmd"][-1] == str(out)


def test_failed_native_build(hello, monkeypatch, capsys):
    seen = []

    def run(cmd, check=False):
        seen.append(Path(cmd[1]).parent)
        return subprocess.CompletedProcess(cmd, 1)

    monkeypatch.setattr(trustc.subprocess, "run", run)
    assert main([str(hello), "--target-triple", TRIPLE]) == 1
    assert "unable to compile with clang" in capsys.readouterr().err
    assert not seen[0].exists()


def test_missing_compiler(hello, capsys):
    args = [str(hello), "--cc", "trustc-no-such-compiler", "--target-triple", TRIPLE]
    assert main(args) == 1
    assert "unable to run native compiler" in capsys.readouterr().err


def test_source_without_extension_needs_output(tmp_path, fake_cc, capsys):
    path = tmp_path / "prog"
    path.write_text('print("x");\n', encoding="utf-8")
    assert main([str(path), "--target-triple", TRIPLE]) == 1
    assert fake_cc == []
    assert "pass -o" in capsys.readouterr().err


def test_verify_rejects_malformed_ir():
    with pytest.raises(ToolchainError):
        verify_ir("this is not llvm ir")
