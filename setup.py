"""Build the vdf_reader package."""
from setuptools import setup, find_namespace_packages

setup(
    name='vdf-reader',
    version='0.3.0',
    description='Streaming parser and typed deserialisation for Valve KeyValues (VDF) files.',
    license='MIT',
    python_requires='>=3.8',
    package_dir={'': 'src'},
    # Scripts is a namespace package.
    packages=find_namespace_packages(where='src', include=['vdf_reader', 'vdf_reader.*']),
    install_requires=[
        'attrs>=22.2.0',
        'typing_extensions>=4.2.0',
    ],
    extras_require={
        'test': [
            'pytest',
            'dirty-equals',
        ],
    },
    classifiers=[
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3 :: Only',
        'Operating System :: OS Independent',
        'Topic :: File Formats',
    ],
)
