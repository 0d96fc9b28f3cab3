import setuptools

with open("genretag/.version") as f:
    version = f.read().strip()

setuptools.setup(
    name="genretag",
    version=version,
    python_requires=">=3.11.0",
    license="Apache-2.0",
    entry_points={"console_scripts": ["genretag = genretag.__main__:main"]},
    packages=["genretag"],
    package_data={"genretag": [".version"]},
    install_requires=[
        "appdirs",
        "av",
        "click>=8.2",
        "mutagen",
        "spotipy",
    ],
    extras_require={"test": ["pytest"]},
)
