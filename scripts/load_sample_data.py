"""
Load sample campaign data into Canopy for manual testing.

Seeds a database with campaigns and participants, either from a JSON
export or from a small generated demo team, then prints the resulting
multiplier tree:

    python scripts/load_sample_data.py data/canopy/canopy.db
    python scripts/load_sample_data.py data/canopy/canopy.db --json export.json

The JSON file holds two lists, ``campaigns`` and ``participants``, in the
shape of ``Campaign.to_dict()`` / ``Participant.to_dict()``. A
participant's ``campaign_ids`` decides which campaigns it is registered in.
"""

import argparse
import json
import logging
import random
from pathlib import Path
from typing import Any

from canopy.src.builder import build_campaign_graph
from canopy.src.models import Campaign, Participant, Role
from canopy.src.storage import CanopyStorage

logger = logging.getLogger(__name__)

FIRST_NAMES = ["Ana", "Bruno", "Carla", "Dario", "Elena", "Fabio", "Gloria", "Hector"]
LAST_NAMES = ["Torres", "Rojas", "Mejia", "Castro", "Vargas", "Ortiz"]
CITIES = [("Antioquia", "Medellin"), ("Valle", "Cali"), ("Cundinamarca", "Bogota")]


def demo_data(seed: int = 7, multipliers: int = 6, followers: int = 14) -> dict[str, Any]:
    """Generate a small two-level demo team for one campaign."""
    rng = random.Random(seed)
    campaign = Campaign(id="camp_demo", name="Demo Drive")

    people: list[Participant] = []
    for i in range(multipliers):
        department, city = rng.choice(CITIES)
        leader = None if i < 2 else people[rng.randrange(i)].id
        people.append(
            Participant(
                id=f"user_m{i:02d}",
                name=f"{rng.choice(FIRST_NAMES)} {rng.choice(LAST_NAMES)}",
                role=Role.MULTIPLIER,
                leader_id=leader,
                department=department,
                city=city,
                campaign_ids=[campaign.id],
            )
        )
    for i in range(followers):
        department, city = rng.choice(CITIES)
        people.append(
            Participant(
                id=f"user_f{i:02d}",
                name=f"{rng.choice(FIRST_NAMES)} {rng.choice(LAST_NAMES)}",
                role=Role.FOLLOWER,
                leader_id=people[rng.randrange(multipliers)].id,
                department=department,
                city=city,
                campaign_ids=[campaign.id],
            )
        )

    return {
        "campaigns": [campaign.to_dict()],
        "participants": [p.to_dict() for p in people],
    }


def load_sample_data(data: dict[str, Any], storage: CanopyStorage) -> tuple[int, int]:
    """Register the campaigns and participants of ``data``.

    Campaigns that already exist are left alone. Participants are
    registered leaders first so that recruit counters line up.

    Returns:
        (campaigns created, registrations made)
    """
    created = 0
    for raw in data.get("campaigns", []):
        campaign = Campaign.from_dict(raw)
        if storage.get_campaign(campaign.id) is None:
            storage.create_campaign(campaign)
            created += 1

    participants = [Participant.from_dict(raw) for raw in data.get("participants", [])]
    by_id = {p.id: p for p in participants}

    registrations = 0
    done: set[str] = set()

    def register(participant: Participant, trail: set[str]) -> None:
        nonlocal registrations
        if participant.id in done:
            return
        leader = by_id.get(participant.leader_id or "")
        if leader is not None and leader.id not in trail:
            register(leader, trail | {participant.id})
        done.add(participant.id)
        for campaign_id in participant.campaign_ids or [None]:
            storage.register_participant(participant, campaign_id=campaign_id)
            registrations += 1

    for participant in participants:
        register(participant, {participant.id})

    return created, registrations


def main():
    parser = argparse.ArgumentParser(description="Load sample data into a Canopy database")
    parser.add_argument("db_path", type=Path, help="SQLite database file")
    parser.add_argument("--json", type=Path, help="JSON export to load instead of demo data")
    parser.add_argument("--depth", type=int, default=3, help="Tree depth to print")
    args = parser.parse_args()

    if args.json:
        with open(args.json, encoding="utf-8") as f:
            data = json.load(f)
    else:
        data = demo_data()

    args.db_path.parent.mkdir(parents=True, exist_ok=True)
    with CanopyStorage(args.db_path) as storage:
        storage.initialize_schema()
        created, registrations = load_sample_data(data, storage)
        print(f"Campaigns created: {created}")
        print(f"Registrations:     {registrations}")

        campaign_ids = [c["id"] for c in data.get("campaigns", [])]
        campaigns = storage.list_campaigns(campaign_ids=campaign_ids)
        participants = storage.list_participants_for_campaigns(campaign_ids)

    forest, graph = build_campaign_graph(participants, campaigns)
    print()
    forest.print_tree(max_depth=args.depth)
    print()
    print(f"Positioned nodes: {len(graph.nodes_by_id)}, edges: {len(graph.edges)}")


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    main()
