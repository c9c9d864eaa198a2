import setuptools

with open('README.md', 'r', encoding='utf-8') as fh:
    long_description = fh.read()

setuptools.setup(
    name='osu_volume_helper',
    version='1.0.0',
    author='',
    author_email='',
    description='Copy the volume of the timing points from one difficulty of an osu! beatmap to the other difficulties of the set',
    long_description=long_description,
    long_description_content_type='text/markdown',
    package_dir={'': 'src'},
    packages=setuptools.find_packages(where='src'),
    classifiers=[
        # see https://pypi.org/classifiers/
        'Development Status :: 4 - Beta',

        'Intended Audience :: End Users/Desktop',
        'Topic :: Games/Entertainment',
        'Topic :: Text Processing',

        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3 :: Only',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
    ],
    python_requires='>=3.10',
    install_requires=['numpy'],
    extras_require={
        'test': ['pytest'],
    },
    entry_points={
        'console_scripts': [
            'osu-volume=osu_volume_helper.cli:entrypoint',
        ],
    },
)
