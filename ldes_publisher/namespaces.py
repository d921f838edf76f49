from rdflib import Namespace
from rdflib.namespace import DCTERMS, PROV, RDF, RDFS, XSD

LDP = Namespace("http://www.w3.org/ns/ldp#")
LDES = Namespace("https://w3id.org/ldes#")
TREE = Namespace("https://w3id.org/tree#")

__all__ = ["DCTERMS", "LDES", "LDP", "PROV", "RDF", "RDFS", "TREE", "XSD"]
