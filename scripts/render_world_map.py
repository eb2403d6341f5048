#!/usr/bin/env python3
"""Render a generated world: terrain, fog, objects and the portal network."""

from __future__ import annotations

import argparse
from datetime import datetime, timezone
from pathlib import Path
import sys

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import networkx as nx
from matplotlib.colors import ListedColormap, to_rgba
from matplotlib.lines import Line2D

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from realm.fog import reveal
from realm.generation import GenerationConfig, WorldGenerator
from realm.models.map import Position, StaticKind, Terrain
from realm.models.world import WorldMap

TERRAIN_COLOURS = {
    Terrain.WATER: "#3b7dd8",
    Terrain.SWAMP: "#5b7553",
    Terrain.PLAINS: "#b5d99c",
    Terrain.FOREST: "#2e7d32",
    Terrain.DESERT: "#e8d18b",
    Terrain.MOUNTAINS: "#8d8d8d",
    Terrain.ROAD: "#a47148",
}
TERRAIN_ORDER = list(TERRAIN_COLOURS)

OBJECT_MARKERS = {
    StaticKind.TOWN: {"marker": "s", "color": "#ffd700", "label": "Town"},
    StaticKind.DUNGEON: {"marker": "v", "color": "#8b0000", "label": "Dungeon"},
    StaticKind.PORTAL: {"marker": "o", "color": "#9467bd", "label": "Portal"},
    StaticKind.HIDDEN_PATH: {"marker": "x", "color": "#222222", "label": "Hidden path"},
    StaticKind.TREASURE_CHEST: {"marker": "D", "color": "#ff8c00", "label": "Treasure chest"},
    StaticKind.RARE_SPAWN: {"marker": "*", "color": "#d62728", "label": "Rare spawn"},
}

FOG_COLOUR = "#101010"


def portal_graph(world: WorldMap) -> nx.Graph:
    graph = nx.Graph()
    for portal in world.statics_of(StaticKind.PORTAL):
        graph.add_node(portal.id, pos=(portal.position.x, portal.position.y), label=portal.name)
        if portal.linked_portal_id:
            graph.add_edge(portal.id, portal.linked_portal_id)
    return graph


def render_world(
    world: WorldMap,
    output_path: Path,
    *,
    dpi: int = 150,
    size: float = 10.0,
    show_fog: bool = True,
) -> None:
    cmap = ListedColormap([TERRAIN_COLOURS[terrain] for terrain in TERRAIN_ORDER])
    grid = [[TERRAIN_ORDER.index(tile.terrain) for tile in row] for row in world.tiles]

    plt.figure(figsize=(size, size * world.height / max(world.width, 1)), dpi=dpi)
    plt.imshow(grid, cmap=cmap, vmin=0, vmax=len(TERRAIN_ORDER) - 1, interpolation="nearest")

    if show_fog:
        fog = [
            [to_rgba(FOG_COLOUR, 0.0 if tile.is_explored else 0.85) for tile in row]
            for row in world.tiles
        ]
        plt.imshow(fog, interpolation="nearest")

    for kind, style in OBJECT_MARKERS.items():
        objects = world.statics_of(kind)
        if not objects:
            continue
        plt.scatter(
            [obj.position.x for obj in objects],
            [obj.position.y for obj in objects],
            marker=style["marker"],
            c=style["color"],
            s=40,
            edgecolors="#000000",
            linewidths=0.4,
            zorder=3,
        )
    for town in world.statics_of(StaticKind.TOWN):
        plt.annotate(town.name, (town.position.x, town.position.y), fontsize=6, xytext=(3, 3), textcoords="offset points")

    graph = portal_graph(world)
    if graph.number_of_edges():
        pos = nx.get_node_attributes(graph, "pos")
        nx.draw_networkx_edges(graph, pos, edge_color="#9467bd", style="dashed", width=1.0, alpha=0.8)

    legend_handles = [
        Line2D([], [], marker=style["marker"], linestyle="", color=style["color"], label=style["label"])
        for style in OBJECT_MARKERS.values()
    ]
    legend_handles.extend(
        Line2D([], [], marker="s", linestyle="", color=TERRAIN_COLOURS[terrain], label=terrain.value.title())
        for terrain in TERRAIN_ORDER
    )
    plt.legend(handles=legend_handles, loc="upper left", bbox_to_anchor=(1.01, 1.0), frameon=False, fontsize=7)
    plt.title(f"{world.seed} ({world.epoch})")
    plt.axis("off")
    plt.tight_layout()

    output_path.parent.mkdir(parents=True, exist_ok=True)
    plt.savefig(output_path, bbox_inches="tight")
    plt.close()


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--output",
        type=Path,
        default=Path("img/world-map.png"),
        help="Where to write the rendered map image.",
    )
    parser.add_argument("--date", help="UTC day of the daily world (YYYY-MM-DD, default: today).")
    parser.add_argument("--seed", help="Explicit seed instead of the daily one.")
    parser.add_argument("--dpi", type=int, default=150, help="Rendering DPI for the figure.")
    parser.add_argument("--size", type=float, default=10.0, help="Figure width in inches.")
    parser.add_argument(
        "--reveal-all",
        action="store_true",
        help="Clear the fog before rendering.",
    )

    args = parser.parse_args()
    now = datetime.now(timezone.utc)
    if args.date:
        now = datetime.strptime(args.date, "%Y-%m-%d").replace(hour=12, tzinfo=timezone.utc)
    overrides = {"seed": args.seed} if args.seed else {}
    world = WorldGenerator().generate(GenerationConfig.daily(now, **overrides), now)
    if args.reveal_all:
        centre = Position(world.width // 2, world.height // 2)
        reveal(world, centre, max(world.width, world.height))
    render_world(world, args.output, dpi=args.dpi, size=args.size)


if __name__ == "__main__":
    main()
