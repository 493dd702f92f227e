import re

import setuptools

with open("pwaccessory/__init__.py", "r") as fh:
    __version__ = '.'.join(re.search(r"version_tuple = \((\d+), (\d+), (\d+)\)", fh.read()).groups())

with open("README.md", "r") as fh:
    long_description = fh.read()

setuptools.setup(
    name="pwaccessory",
    version=__version__,
    description="Present local Tesla Energy Gateways and Powerwalls as accessories",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=setuptools.find_packages(include=['pwaccessory', 'pwaccessory.*']),
    python_requires='>=3.10',
    install_requires=[
        'requests',
        'urllib3',
        'pydantic>=2',
        'pydantic-settings',
        'python-dotenv',
    ],
    extras_require={
        'test': [
            'pytest',
            'pytest-asyncio',
        ],
    },
    entry_points={
        'console_scripts': ['pwaccessory=pwaccessory.__main__:main'],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
)
