"""Registry of the archives refstore knows how to ingest."""

import logging
from dataclasses import dataclass

from refstore.config import Config
from refstore.domain.ingest.port.parser import Parser
from refstore.domain.ingest.port.source import Downloader, VersionSource
from refstore.domain.shared.error import ConfigurationError, NotFoundError
from refstore.infrastructure.ingest import gene_ontology, genbank, taxonomy, uniprot
from refstore.infrastructure.ingest.parser import FastaParser

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceEntry:
    job_type: str
    record_type: str
    source: VersionSource


class ParserRegistry:
    """Parsers by job type.

    Archive-specific flat-file parsers are supplied by the host with
    ``register``; only FASTA-shaped archives have one out of the box.
    """

    def __init__(self) -> None:
        self._parsers: dict[str, Parser] = {}

    def register(self, job_type: str, parser: Parser) -> None:
        self._parsers[job_type] = parser
        logger.debug(f"Registered {type(parser).__name__} for {job_type}")

    def get(self, job_type: str) -> Parser:
        parser = self._parsers.get(job_type)
        if parser is None:
            raise ConfigurationError(f"No parser registered for job type {job_type!r}")
        return parser

    def __contains__(self, job_type: str) -> bool:
        return job_type in self._parsers


class SourceCatalog:
    def __init__(self, config: Config, downloader: Downloader) -> None:
        sources = config.sources
        entries = [
            SourceEntry(
                uniprot.JOB_TYPE,
                uniprot.RECORD_TYPE,
                uniprot.UniProtSource(downloader, sources.uniprot),
            ),
            SourceEntry(
                taxonomy.JOB_TYPE,
                taxonomy.RECORD_TYPE,
                taxonomy.TaxonomySource(downloader, sources.taxonomy),
            ),
            SourceEntry(
                gene_ontology.JOB_TYPE,
                gene_ontology.RECORD_TYPE,
                gene_ontology.GeneOntologySource(downloader, sources.gene_ontology),
            ),
        ]
        for division in sources.genbank.divisions:
            entries.append(
                SourceEntry(
                    genbank.job_type_for(division),
                    genbank.RECORD_TYPE,
                    genbank.GenBankDivisionSource(downloader, sources.genbank, division),
                )
            )
        self._entries = {entry.job_type: entry for entry in entries}
        self.genbank_divisions = list(sources.genbank.divisions)
        self.genbank_concurrency = sources.genbank.concurrency

    def job_types(self) -> list[str]:
        return sorted(self._entries)

    def get(self, job_type: str) -> SourceEntry:
        entry = self._entries.get(job_type)
        if entry is None:
            raise NotFoundError(f"Unknown job type: {job_type}")
        return entry


def default_parsers() -> ParserRegistry:
    registry = ParserRegistry()
    registry.register(uniprot.JOB_TYPE, FastaParser(uniprot.RECORD_TYPE))
    return registry
