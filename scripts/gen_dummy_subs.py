# scripts/gen_dummy_subs.py – synthetic subframes + BG/FG ROI set for trying the pipeline
import argparse
import pathlib

import numpy as np
import roifile
import tifffile

parser = argparse.ArgumentParser()
parser.add_argument("project", type=pathlib.Path)
parser.add_argument("-n", "--num", type=int, default=30)
parser.add_argument("--noise", type=float, default=400.0, help="per-frame noise (ADU)")
parser.add_argument("--seed", type=int, default=0)
args = parser.parse_args()

rng = np.random.default_rng(args.seed)
lights = args.project / "lights"
lights.mkdir(parents=True, exist_ok=True)

h, w = 120, 160
sky = np.full((h, w), 2000.0)
sky[40:80, 90:140] += 600.0  # faint "nebula"
for i in range(args.num):
    img = sky + rng.normal(0.0, args.noise, (h, w))
    tifffile.imwrite(lights / f"sub_{i:03d}_c_r.tif", np.clip(img, 0, 65535).astype(np.uint16))


def rect(name, left, top, right, bottom):
    return roifile.ImagejRoi(
        roitype=roifile.ROI_TYPE.RECT, name=name, left=left, top=top, right=right, bottom=bottom
    )


roifile.roiwrite(
    args.project / "rois.zip",
    [rect("BG", 10, 10, 50, 50), rect("FG", 95, 45, 135, 75)],
    mode="w",
)
(args.project / "config.yaml").write_text(
    "input:\n  input_dir: lights\n  file_pattern: '*_c_r.tif'\n  default_exposure_s: 120\n"
    "depth:\n  strategy: doubling\n",
    encoding="utf-8",
)
print("Dummy project written:", args.project)
