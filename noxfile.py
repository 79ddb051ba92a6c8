from __future__ import annotations

import nox

nox.options.error_on_missing_interpreters = True


def tests_impl(
    session: nox.Session,
    pytest_extra_args: list[str] = [],
) -> None:
    # Install deps and the package itself.
    session.install("-e", ".[test]")
    # Print the Python version and bytesize.
    session.run("python", "--version")
    session.run("python", "-c", "import struct; print(struct.calcsize('P') * 8)")
    # Print OpenSSL information.
    session.run("python", "-c", "import ssl; print(ssl.OPENSSL_VERSION)")

    # Environment variables being passed to the pytest run.
    pytest_session_envvars = {
        "PYTHONWARNINGS": "always::DeprecationWarning",
    }

    # We use parallel mode and then combine in a later step
    session.run(
        "python",
        "-m",
        "coverage",
        "run",
        "--parallel-mode",
        "-m",
        "pytest",
        "-v",
        "-ra",
        "--tb=native",
        "--durations=10",
        "--strict-config",
        "--strict-markers",
        *pytest_extra_args,
        *(session.posargs or ("test/",)),
        env=pytest_session_envvars,
    )


@nox.session(python=["3.9", "3.10", "3.11", "3.12", "3.13", "3.14", "pypy3.10"])
def test(session: nox.Session) -> None:
    tests_impl(session)


@nox.session(python="3")
def coverage(session: nox.Session) -> None:
    """Combine the parallel coverage files and report."""
    session.install("coverage[toml]")
    session.run("coverage", "combine")
    session.run("coverage", "report", "-m")


@nox.session(python="3.12")
def mypy(session: nox.Session) -> None:
    """Run mypy."""
    session.install("mypy", "-e", ".[test]")
    session.run("mypy", "--version")
    session.run(
        "mypy",
        "-m",
        "noxfile",
        "-p",
        "reqwire",
        "-p",
        "test",
    )
