from setuptools import setup

DESCRIPTION = 'A hierarchical container of groups and NumPy .npy datasets ' \
              'on a standard file system.'

with open('README.md') as f:
    LONG_DESCRIPTION = f.read()

version = {}
with open('grove/version.py') as f:
    exec(f.read(), version)

dependencies = [
    'asciitree',
    'numpy>=1.17',
    'numcodecs>=0.10',
    'donfig>=0.8',
]

setup(
    name='grove',
    version=version['version'],
    description=DESCRIPTION,
    long_description=LONG_DESCRIPTION,
    long_description_content_type='text/markdown',
    setup_requires=[
        'setuptools>=38.6.0',
    ],
    extras_require={
        'test': [
            'pytest',
        ],
    },
    python_requires='>=3.8, <4',
    install_requires=dependencies,
    package_dir={'': '.'},
    packages=['grove', 'grove.tests'],
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Developers',
        'Intended Audience :: Information Technology',
        'Intended Audience :: Science/Research',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python',
        'Topic :: Software Development :: Libraries :: Python Modules',
        'Operating System :: Unix',
        'Programming Language :: Python :: 3',
    ],
    license='MIT',
)
