#! /usr/bin/env python3
#
# Copy the volume of one difficulty to another, saving the result next to it instead of overwriting

from pathlib import Path
from osu_volume_helper import osu_format, volume

# CONFIG

# both files are looked up in the current working directory
source_file = Path("Artist - Title (Mapper) [Insane].osu")
target_file = Path("Artist - Title (Mapper) [Normal].osu")
save_suffix = "_volume"  # output is saved as "... [Normal]_volume.osu"
insert_points = False  # set to True to also add green lines where the source changes volume

# END OF CONFIG

profile = volume.extract_volume_profile(osu_format.import_file(source_file))
print(f"Loaded {len(profile)} volume points")

with osu_format.file_data(target_file, save_suffix=save_suffix) as f:
    f.beatmap = volume.apply_volume_profile(f.beatmap, profile, insert_points=insert_points)
