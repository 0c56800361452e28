from setuptools import setup
from os import path

BASE_DIR = path.abspath(path.dirname(__file__))
with open(path.join(BASE_DIR, 'README.md'), encoding='utf-8') as f:
    long_description = f.read()


# based on https://packaging.python.org/guides/single-sourcing-package-version/
def get_version():
    version_file = path.join(BASE_DIR, 'memomancer', 'version.py')
    with open(version_file, encoding='utf-8') as f:
        for line in f:
            if line.startswith('__version__'):
                delim = '"' if '"' in line else "'"
                return line.split(delim)[1]
        raise RuntimeError("Unable to find version string.")


setup(
    name='memomancer',
    version=get_version(),
    packages=['memomancer', 'memomancer.integrations'],
    license='MIT',
    description='Signed wallet pass generator for short notes and drawings',
    long_description=long_description,
    long_description_content_type='text/markdown',
    package_data={'memomancer': ['templates/walletmemo.pass/*.json']},
    classifiers=[
        'Development Status :: 3 - Alpha',

        'Intended Audience :: Developers',

        'License :: OSI Approved :: MIT License',

        'Programming Language :: Python :: 3.8',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',

        'Topic :: Security :: Cryptography',
        'Topic :: Multimedia :: Graphics',
    ],
    entry_points={
        "console_scripts": [
            "memomancer = memomancer.__main__:launch"
        ]
    },
    install_requires=[
        'asn1crypto>=1.4.0',
        'click>=7.1.2',
        'cryptography>=3.4.7',
        'Pillow>=10.1.0',
        'pyyaml>=5.4.1',
        'python-dateutil>=2.8.1',
        'tzlocal>=2.1'
    ],
    setup_requires=[
        'wheel'
    ],
    extras_require={
        'web-api': ['Werkzeug>=2.2.0'],
        'testing': ['pytest>=6.1.1', 'freezegun>=1.1.0', 'Werkzeug>=2.2.0'],
    },
    tests_require=[
        'pytest>=6.1.1', 'freezegun>=1.1.0', 'Werkzeug>=2.2.0',
    ],
    keywords="wallet pkpass signing"
)
