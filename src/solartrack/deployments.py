"""
Deployment descriptors -- which contract lives on which chain.

A deployment step (out of band) writes one JSON artifact per network:

    <deployments_dir>/<network>/SolarTrackManager.json
        {address, abi, deployer, network, chainId, deployedAt}

The registry reads them all and answers "what is the contract address
on chain N?". An entry with the zero address counts as not deployed.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as ModelValidationError

from .models import ZERO_ADDRESS

logger = logging.getLogger("solartrack.deployments")

CONTRACT_NAME = "SolarTrackManager"


class Deployment(BaseModel):
    """One network's deployment record."""

    model_config = ConfigDict(populate_by_name=True)

    address: str
    abi: list = Field(default_factory=list)
    deployer: str = ""
    network: str
    chain_id: int = Field(alias="chainId")
    deployed_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), alias="deployedAt"
    )

    @property
    def is_deployed(self) -> bool:
        return bool(self.address) and self.address.lower() != ZERO_ADDRESS


class DeploymentRegistry:
    """Index of deployment artifacts under one directory."""

    def __init__(self, deployments_dir: Path, contract_name: str = CONTRACT_NAME):
        self.deployments_dir = deployments_dir
        self.contract_name = contract_name

    def load_all(self) -> list[Deployment]:
        """Parse every artifact, skipping unreadable ones.

        Returns:
            Deployments sorted by network name.
        """
        if not self.deployments_dir.exists():
            return []

        deployments = []
        for artifact in sorted(self.deployments_dir.glob(f"*/{self.contract_name}.json")):
            try:
                data = json.loads(artifact.read_text(encoding="utf-8"))
                deployments.append(Deployment.model_validate(data))
            except (json.JSONDecodeError, OSError, ModelValidationError) as exc:
                logger.warning("Skipping bad deployment artifact %s: %s", artifact, exc)
        return deployments

    def resolve(self, chain_id: Optional[int]) -> Optional[Deployment]:
        """Deployment for ``chain_id``, or None if absent or zero-address."""
        if chain_id is None:
            return None
        for deployment in self.load_all():
            if deployment.chain_id == chain_id:
                return deployment if deployment.is_deployed else None
        return None

    def write(self, deployment: Deployment) -> Path:
        """Persist a deployment artifact keyed by its network name.

        Returns:
            Path: The written artifact.
        """
        target = self.deployments_dir / deployment.network / f"{self.contract_name}.json"
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(
            deployment.model_dump_json(by_alias=True, indent=2), encoding="utf-8"
        )
        logger.info("Deployment info saved to %s", target)
        return target
