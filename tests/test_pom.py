from __future__ import annotations

from pathlib import Path

import pytest
from lxml import etree

from repo_keeper.exceptions import PomModelError, PomNotFoundError, PomParseError
from repo_keeper.models import ProjectModel
from repo_keeper.pom import pom_to_bytes, read_pom


def _write(tmp_path: Path, name: str, content: str) -> Path:
    path = tmp_path / name
    path.write_text(content, encoding="utf-8")
    return path


def test_read_pom_without_namespace(tmp_path: Path) -> None:
    pom = """<?xml version=\"1.0\" encoding=\"UTF-8\"?>
<project>
  <modelVersion>4.0.0</modelVersion>
  <groupId>com.acme</groupId>
  <artifactId>demo</artifactId>
  <version>1.0.0</version>

  <dependencies>
    <dependency>
      <groupId>org.slf4j</groupId>
      <artifactId>slf4j-api</artifactId>
      <version>2.0.12</version>
      <scope>compile</scope>
    </dependency>
  </dependencies>
</project>
"""
    path = _write(tmp_path, "pom.xml", pom)
    model = read_pom(path)

    assert isinstance(model, ProjectModel)
    assert not model.is_maven1
    assert (model.group_id, model.artifact_id, model.version) == ("com.acme", "demo", "1.0.0")
    assert model.packaging == "jar"
    assert len(model.dependencies) == 1
    assert model.dependencies[0].artifact_id == "slf4j-api"
    assert model.dependencies[0].scope == "compile"


def test_read_pom_with_namespace(tmp_path: Path) -> None:
    pom = """<?xml version=\"1.0\" encoding=\"UTF-8\"?>
<project xmlns=\"http://maven.apache.org/POM/4.0.0\">
  <modelVersion>4.0.0</modelVersion>
  <groupId>com.acme</groupId>
  <artifactId>demo</artifactId>
  <version>1.0.0</version>
  <packaging>war</packaging>

  <dependencies>
    <dependency>
      <groupId>junit</groupId>
      <artifactId>junit</artifactId>
      <version>4.13.2</version>
      <scope>test</scope>
      <optional>false</optional>
    </dependency>
  </dependencies>
</project>
"""
    path = _write(tmp_path, "pom.xml", pom)
    model = read_pom(path)

    assert model.packaging == "war"
    dep = model.dependencies[0]
    assert (dep.group_id, dep.artifact_id, dep.version) == ("junit", "junit", "4.13.2")
    assert dep.scope == "test"
    assert dep.optional is False


def test_inherit_group_and_version_from_parent(tmp_path: Path) -> None:
    pom = """<?xml version=\"1.0\" encoding=\"UTF-8\"?>
<project xmlns=\"http://maven.apache.org/POM/4.0.0\">
  <modelVersion>4.0.0</modelVersion>

  <parent>
    <groupId>com.acme</groupId>
    <artifactId>parent</artifactId>
    <version>9.9.9</version>
  </parent>

  <artifactId>child</artifactId>
</project>
"""
    model = read_pom(_write(tmp_path, "pom.xml", pom))

    assert (model.group_id, model.artifact_id, model.version) == ("com.acme", "child", "9.9.9")


def test_resolve_properties_and_keep_unknown_placeholders(tmp_path: Path) -> None:
    pom = """<?xml version=\"1.0\" encoding=\"UTF-8\"?>
<project>
  <modelVersion>4.0.0</modelVersion>
  <groupId>com.acme</groupId>
  <artifactId>demo</artifactId>
  <version>1.0.0</version>

  <properties>
    <lib.version>2.3.4</lib.version>
  </properties>

  <dependencies>
    <dependency>
      <groupId>org.example</groupId>
      <artifactId>lib</artifactId>
      <version>${lib.version}</version>
    </dependency>
    <dependency>
      <groupId>${project.groupId}</groupId>
      <artifactId>sibling</artifactId>
      <version>${sibling.version}</version>
    </dependency>
  </dependencies>
</project>
"""
    model = read_pom(_write(tmp_path, "pom.xml", pom))

    versions = {d.artifact_id: (d.group_id, d.version) for d in model.dependencies}
    assert versions["lib"] == ("org.example", "2.3.4")
    assert versions["sibling"] == ("com.acme", "${sibling.version}")


def test_read_maven1_pom(tmp_path: Path) -> None:
    pom = """<?xml version=\"1.0\"?>
<project>
  <pomVersion>3</pomVersion>
  <id>commons-tool</id>
  <name>Commons Tool</name>
  <currentVersion>1.2</currentVersion>
  <dependencies>
    <dependency>
      <id>commons-logging</id>
      <version>1.0.4</version>
    </dependency>
    <dependency>
      <groupId>ant</groupId>
      <artifactId>ant-optional</artifactId>
      <version>1.5.1</version>
    </dependency>
  </dependencies>
</project>
"""
    model = read_pom(_write(tmp_path, "project.xml", pom))

    assert model.is_maven1
    assert (model.group_id, model.artifact_id, model.version) == ("commons-tool", "commons-tool", "1.2")
    assert model.name == "Commons Tool"
    deps = [(d.group_id, d.artifact_id, d.version) for d in model.dependencies]
    assert deps == [("commons-logging", "commons-logging", "1.0.4"), ("ant", "ant-optional", "1.5.1")]


def test_read_pom_errors(tmp_path: Path) -> None:
    with pytest.raises(PomNotFoundError):
        read_pom(tmp_path / "missing.pom")

    with pytest.raises(PomParseError):
        read_pom(_write(tmp_path, "broken.pom", "<project><groupId>"))

    with pytest.raises(PomModelError, match="artifactId"):
        read_pom(_write(tmp_path, "no-artifact.pom", "<project><groupId>g</groupId><version>1</version></project>"))

    with pytest.raises(PomModelError, match="version"):
        read_pom(_write(tmp_path, "no-version.pom", "<project><groupId>g</groupId><artifactId>a</artifactId></project>"))


def test_pom_to_bytes_writes_maven2_model(tmp_path: Path) -> None:
    model = ProjectModel(
        model_version="3",
        group_id="commons-tool",
        artifact_id="commons-tool",
        version="1.2",
        name="Commons Tool",
        dependencies=[
            {"group_id": "commons-logging", "artifact_id": "commons-logging", "version": "1.0.4"},
            {"group_id": "ant", "artifact_id": "ant-optional", "type": "zip", "optional": True},
        ],
    )

    content = pom_to_bytes(model)
    root = etree.fromstring(content)
    ns = {"m": "http://maven.apache.org/POM/4.0.0"}

    assert root.findtext("m:modelVersion", namespaces=ns) == "4.0.0"
    assert root.find("m:packaging", namespaces=ns) is None
    assert root.findtext("m:dependencies/m:dependency[2]/m:type", namespaces=ns) == "zip"
    assert root.findtext("m:dependencies/m:dependency[2]/m:optional", namespaces=ns) == "true"

    converted = read_pom(_write(tmp_path, "converted.pom", content.decode("utf-8")))
    assert not converted.is_maven1
    assert converted.name == "Commons Tool"
    assert [d.artifact_id for d in converted.dependencies] == ["commons-logging", "ant-optional"]
