from setuptools import setup, find_namespace_packages

setup(
    name="whoami-scan",
    version="0.1.0",
    description="whoami-scan — audit EC2 instances for AMIs from unverified publishers",
    author="whoami-scan",
    python_requires=">=3.9",
    packages=find_namespace_packages(include=["scanner", "scanner.*", "console", "console.*"]),
    py_modules=["whoami_scan"],
    install_requires=[
        "boto3>=1.34.0",
        "pyyaml>=6.0",
    ],
    extras_require={
        "dev": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "whoami-scan=whoami_scan:main",
        ],
    },
)
