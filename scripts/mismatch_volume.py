#!/usr/bin/env python3
"""
Mismatch volume CLI tool.
Builds the metamer mismatch volume of a color between two CIE illuminants and plots it.
"""

import argparse
import logging

import matplotlib.pyplot as plt
import numpy as np
from tqdm import tqdm

from MetamerColor import (DirectColorConstraint, GenerateCosineBasis,
                          LinearConstraint, MetamerBuilder, SceneResources,
                          SolveSpectrum, Uplifting, UpliftingVertex)
from MetamerColor.Spectra.ColorSystem import LoadCIEIlluminant, LoadCIEObserver
from MetamerColor.Utils.Settings import BuilderSettings


def plot_mismatch_volume(builder: MetamerBuilder, metamer_color, output: str):
    colors = np.array([s.color for s in builder.samples])
    fig = plt.figure(figsize=(7, 7))
    ax = fig.add_subplot(111, projection='3d')
    ax.scatter(colors[:, 0], colors[:, 1], colors[:, 2], c=np.clip(colors, 0, 1), s=12)
    if builder.hull.has_hull():
        for face in builder.hull.hull_elems:
            tri = builder.hull.verts[np.append(face, face[0])]
            ax.plot(tri[:, 0], tri[:, 1], tri[:, 2], color='gray', linewidth=0.3)
    ax.scatter(*metamer_color, color='black', s=60, marker='x')
    ax.set_xlabel('R')
    ax.set_ylabel('G')
    ax.set_zlabel('B')
    ax.set_title(f'Mismatch volume ({len(colors)} samples)')
    plt.savefig(output, dpi=150, bbox_inches='tight')
    plt.close(fig)


def main():
    parser = argparse.ArgumentParser(description='Build and plot the mismatch volume of a color')
    parser.add_argument('--color', type=float, nargs=3, default=[0.5, 0.3, 0.2],
                        help='Linear sRGB color under the base illuminant')
    parser.add_argument('--base_illuminant', default='D65', help='CIE illuminant of the base color system')
    parser.add_argument('--free_illuminant', default='A', help='CIE illuminant of the free color system')
    parser.add_argument('--n_bases', type=int, default=12, help='Number of cosine basis functions')
    parser.add_argument('--n_samples', type=int, default=256, help='Boundary samples before convergence')
    parser.add_argument('--output', default='mismatch_volume.png', help='Output figure path')
    parser.add_argument('--verbose', action='store_true', help='Enable debug logging')
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    wavelengths = np.arange(400, 710, 10)
    scene = SceneResources(observers=[LoadCIEObserver(wavelengths)],
                           illuminants=[LoadCIEIlluminant(wavelengths, args.base_illuminant),
                                        LoadCIEIlluminant(wavelengths, args.free_illuminant)],
                           bases=[GenerateCosineBasis(wavelengths, args.n_bases)],
                           as_rgb=True)

    constraint = DirectColorConstraint(is_base_active=True, colr_i=args.color,
                                       cstr_j=[LinearConstraint(True, 0, 1, np.zeros(3))])
    vertex = UpliftingVertex('color', constraint)
    uplifting = Uplifting(observer_i=0, illuminant_i=0, basis_i=0, verts=[vertex])

    # Start the free variable at the plain roundtrip solution under the free illuminant
    roundtrip = SolveSpectrum(scene.bases[0], [(uplifting.csys(scene), constraint.colr_i)])
    vertex.set_mismatch_position(scene.csys(0, 1)(roundtrip.spectrum))

    builder = MetamerBuilder(BuilderSettings(n_samples=args.n_samples))
    builder.set_vertex(vertex)
    n_batches = int(np.ceil(args.n_samples / builder.settings.n_samples_iter))
    for _ in tqdm(range(n_batches), desc="Sampling mismatch volume"):
        if not builder.advance(scene, uplifting, vertex):
            break

    metamer = builder.realize(scene, uplifting, vertex)
    print(f"Builder state: {builder.state.name}, {len(builder.samples)} samples")
    print(f"Metamer color under {args.base_illuminant}: {np.round(metamer.color, 4)}")
    print(f"Metamer color under {args.free_illuminant}: "
          f"{np.round(scene.csys(0, 1)(metamer.spectrum), 4)}")

    plot_mismatch_volume(builder, vertex.get_mismatch_position(), args.output)
    print(f"Saved figure to {args.output}")


if __name__ == "__main__":
    main()
