from setuptools import find_packages, setup

setup(
    name="cubeserve",
    version="0.1.0",
    description="Static server for the cube navigation SPA with filesystem health probing",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "flask>=2.2",
        "werkzeug>=2.2",
        "cachetools>=5.0.0",
    ],
    entry_points={
        "console_scripts": [
            "cubeserve=cubeserve.__main__:main",
        ],
    },
    python_requires=">=3.10",
    extras_require={
        "dev": [
            "pytest",
            "build",
            "twine",
        ],
    },
)
