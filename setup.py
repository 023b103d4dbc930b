#!/usr/bin/env python3
"""
Setup script for the Manila CSI plugin.
"""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

with open("requirements.txt", "r", encoding="utf-8") as fh:
    requirements = [line.strip() for line in fh if line.strip() and not line.startswith("#")]

with open("test-requirements.txt", "r", encoding="utf-8") as fh:
    test_requirements = [line.strip() for line in fh if line.strip() and not line.startswith("#")]

packages = find_packages(where=".", exclude=["tests", "tests.*"])

setup(
    name="manila-csi-plugin",
    version="0.9.0",
    author="Manila CSI Plugin Project",
    description="CSI plugin provisioning OpenStack Manila shares and proxying node operations",
    long_description=long_description,
    long_description_content_type="text/markdown",
    license="Apache-2.0",
    packages=packages,
    package_dir={"": "."},
    package_data={
        "manila_csi": ["csi/*.proto"],
    },
    include_package_data=True,
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: System Administrators",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: POSIX :: Linux",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
    python_requires=">=3.8",
    install_requires=requirements,
    extras_require={
        "test": test_requirements,
    },
    entry_points={
        "console_scripts": [
            "manila-csi-plugin=manila_csi.cli:main",
        ],
        "oslo.config.opts": [
            "manila_csi = manila_csi.configuration:list_opts",
        ],
    },
)
