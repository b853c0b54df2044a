import re, setuptools

with open("README.md", "r") as fh:
    long_description = fh.read()

with open('./lnnetkit/__init__.py', 'r') as f:
    MATCH_EXPR = "__version__[^'\"]+(['\"])([^'\"]+)"
    VERSION = re.search(MATCH_EXPR, f.read()).group(2)

# to package, run:
# pip install setuptools wheel sdist twine
# python3 setup.py sdist bdist_wheel
setuptools.setup(
    name="lnnetkit",
    version=VERSION,
    description="Drive bitcoin regtest Lightning Networks of LND, "
                "c-lightning and eclair nodes.",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=setuptools.find_packages(exclude=['test', 'test.*']),
    python_requires='>=3.8',
    install_requires=['aiohttp'],
    extras_require={
        'test': ['pytest'],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
)
