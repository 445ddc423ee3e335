"""
CORLA: statewide ballot-level comparison risk-limiting audits
"""

import os


DISTNAME = "corla"
DESCRIPTION = "Sampling, statistics and workflow state for statewide ballot-level comparison risk-limiting audits"
AUTHOR = "CORLA developers"
AUTHOR_EMAIL = ""
URL = ""
LICENSE = "BSD License"
DOWNLOAD_URL = ""


def parse_requirements_file(filename):
    with open(filename, encoding="utf-8") as fid:
        requires = [l.strip() for l in fid.readlines() if l.strip()]

    return requires


INSTALL_REQUIRES = parse_requirements_file("requirements.txt")
TESTS_REQUIRE = parse_requirements_file("requirements-test.txt")

with open(os.path.join("corla", "__init__.py")) as fid:
    for line in fid:
        if line.startswith("__version__"):
            VERSION = line.strip().split()[-1][1:-1]
            break

with open("README.md") as fh:
    LONG_DESCRIPTION = fh.read()


if __name__ == "__main__":

    from setuptools import setup

    setup(
        name=DISTNAME,
        version=VERSION,
        license=LICENSE,
        description=DESCRIPTION,
        long_description=LONG_DESCRIPTION,
        long_description_content_type="text/markdown",
        author=AUTHOR,
        author_email=AUTHOR_EMAIL,
        url=URL,
        download_url=DOWNLOAD_URL,
        classifiers=[
            "Development Status :: 3 - Alpha",
            "Environment :: Console",
            "Intended Audience :: Developers",
            "Intended Audience :: Science/Research",
            "License :: OSI Approved :: BSD License",
            "Programming Language :: Python",
            "Programming Language :: Python :: 3.10",
            "Operating System :: Microsoft :: Windows",
            "Operating System :: POSIX",
            "Operating System :: Unix",
            "Operating System :: MacOS",
        ],
        install_requires=INSTALL_REQUIRES,
        tests_require=TESTS_REQUIRE,
        extras_require={"test": TESTS_REQUIRE},
        python_requires=">=3.10.4",
        packages=["corla", "corla.core", "corla.formats"],
    )
