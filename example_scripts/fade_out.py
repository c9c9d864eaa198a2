#! /usr/bin/env python3
#
# Fade out the volume of all timing points after a given time

from pathlib import Path
from osu_volume_helper import osu_format, volume

# CONFIG

fade_start = 90_000  # in ms
fade_end = 100_000  # in ms, volume is at fade_min from here on
fade_min = 5  # osu! does not play hitsounds below 5%

in_file = Path("my_map.osu")  # this can be None to take a command line argument instead
save_suffix = "_fade"  # output is saved as my_map_fade.osu

# END OF CONFIG

with osu_format.file_data(in_file, save_suffix=save_suffix) as f:
    pairs = []
    for tp in f.beatmap.timing_points:
        if tp.time <= fade_start:
            pairs.append((tp.time, tp.volume))
        else:
            progress = min((tp.time - fade_start) / (fade_end - fade_start), 1)
            pairs.append((tp.time, round(tp.volume + (fade_min - tp.volume) * progress)))
    f.beatmap = volume.apply_volume_profile(f.beatmap, volume.VolumeProfile.from_pairs(pairs))
