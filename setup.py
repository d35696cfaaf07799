from setuptools import setup
import os.path
import re

VERSION_RE = re.compile(r"""__version__ = ['"]([-a-z0-9.]+)['"]""")
BASE_PATH = os.path.dirname(__file__)


with open(os.path.join(BASE_PATH, "socksfree", "__init__.py")) as f:
    try:
        version = VERSION_RE.search(f.read()).group(1)
    except (AttributeError, IndexError):
        raise RuntimeError("Unable to determine version.")


with open(os.path.join(BASE_PATH, "README.md")) as readme:
    long_description = readme.read()


setup(
    name="socksfree",
    description="SOCKS5 CONNECT proxy server built on an io-free protocol parser",
    long_description=long_description,
    long_description_content_type="text/markdown",
    license="MIT",
    version=version,
    packages=["socksfree"],
    python_requires=">=3.7",
    install_requires=["Cython", "PyYAML"],
    extras_require={"test": ["pytest", "coverage", "pytest-cov"]},
    entry_points={"console_scripts": ["socksfree = socksfree.cli:main"]},
    classifiers=[
        "License :: OSI Approved :: MIT License",
        "Intended Audience :: System Administrators",
        "Topic :: Internet :: Proxy Servers",
        "Programming Language :: Python :: 3",
    ],
)
