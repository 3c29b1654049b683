"""
Receives: DeploymentConfig (from the Configuration Assembler)
Produces: IaCBundle, Terraform (.tf) files + host bootstrap script, in memory

Contract
────────
  • Pure text synthesis. No disk, no clock, no random names: the same
    DeploymentConfig yields byte-identical files, so plan/apply re-runs diff
    cleanly.
  • The Provisioning Driver writes the bundle to disk; this agent never does.
  • The resource set is the single compute path currently implemented,
    whatever the strategy: VPC, internet gateway, public subnet + route
    table, security group, one EC2 instance, one Elastic IP.
  • The machine image is a variable (ami_id) with no default. The driver
    resolves it at apply/destroy time and passes TF_VAR_ami_id.
  • user_data is file("${path.module}/bootstrap.sh") so the bash body is
    never parsed as HCL.

Files
─────
  providers.tf   terraform block, aws provider, aws_region variable
  main.tf        resources
  variables.tf   inputs with defaults from the config
  outputs.tf     instance_id, instance_public_ip, instance_public_dns,
                 application_url, vpc_id, subnet_id, security_group_id
  bootstrap.sh   host setup procedure
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List

from src.agents.bootstrap_script import render_bootstrap
from src.agents.config_assembler import DeploymentConfig

logger = logging.getLogger(__name__)

AWS_PROVIDER_VERSION = "~> 5.31.0"
BASE_INGRESS_PORTS: List[tuple] = [(22, "SSH"), (80, "HTTP"), (443, "HTTPS")]

BOOTSTRAP_FILE = "bootstrap.sh"
TERRAFORM_FILES = ("providers.tf", "main.tf", "variables.tf", "outputs.tf")


# ── Data classes ──────────────────────────────────────────────────────────────

@dataclass
class IaCBundle:
    """
    All generated files for one deployment, held in memory only.
    `files` maps filename → content and is what the driver writes.
    """
    deployment_id:    str
    files:            Dict[str, str]                       # filename → content
    resources:        List[str] = field(default_factory=list)   # "aws_vpc.app_vpc", ...
    variables:        List[str] = field(default_factory=list)
    outputs:          List[str] = field(default_factory=list)

    @property
    def provider_block(self) -> str:
        return self.files["providers.tf"]

    @property
    def resource_block(self) -> str:
        return self.files["main.tf"]

    @property
    def variables_block(self) -> str:
        return self.files["variables.tf"]

    @property
    def outputs_block(self) -> str:
        return self.files["outputs.tf"]

    @property
    def bootstrap_script(self) -> str:
        return self.files[BOOTSTRAP_FILE]

    @property
    def terraform_files(self) -> Dict[str, str]:
        return {k: v for k, v in self.files.items() if k.endswith(".tf")}


# ── Agent ─────────────────────────────────────────────────────────────────────

class IaCGeneratorAgent:
    """
    Generates Terraform + bootstrap script from a DeploymentConfig.

    Input:  DeploymentConfig
    Output: IaCBundle (in-memory, never written to disk by this agent)
    """

    def generate(self, config: DeploymentConfig) -> IaCBundle:
        deployment_id = config.deployment_id
        port = config.port

        files: Dict[str, str] = {}
        files["providers.tf"] = self._tf_providers(config)
        files["main.tf"]      = self._tf_main(config)
        files["variables.tf"] = self._tf_variables(config)
        files["outputs.tf"]   = self._tf_outputs(port)
        files[BOOTSTRAP_FILE] = render_bootstrap(
            app_name=config.app_name,
            repository_url=config.repository_url,
            port=port,
            language=config.language,
            framework=config.framework,
            app_type=config.application.app_type,
        )

        bundle = IaCBundle(
            deployment_id=deployment_id,
            files=files,
            resources=[
                "aws_vpc.app_vpc",
                "aws_internet_gateway.app_igw",
                "aws_subnet.app_subnet",
                "aws_route_table.app_rt",
                "aws_route_table_association.app_rta",
                "aws_security_group.app_sg",
                "aws_instance.app_instance",
                "aws_eip.app_eip",
            ],
            variables=[
                "aws_region", "ami_id", "instance_type", "app_name", "environment",
                "vpc_cidr", "subnet_cidr", "availability_zone",
            ],
            outputs=[
                "instance_id", "instance_public_ip", "instance_public_dns",
                "application_url", "vpc_id", "subnet_id", "security_group_id",
            ],
        )
        logger.info(
            "[%s] IaC generated: %d files, %d resources, port %d",
            deployment_id, len(files), len(bundle.resources), port,
        )
        return bundle

    # ══════════════════════════════════════════════════════════════════════════
    # Terraform templates
    # ══════════════════════════════════════════════════════════════════════════

    def _tf_providers(self, config: DeploymentConfig) -> str:
        return f'''# Generated for deployment {config.deployment_id}
# DO NOT EDIT: regenerated on every provision

terraform {{
  required_version = ">= 1.0"

  required_providers {{
    aws = {{
      source  = "hashicorp/aws"
      version = "{AWS_PROVIDER_VERSION}"
    }}
  }}
}}

provider "aws" {{
  region = var.aws_region

  default_tags {{
    tags = {{
      Project      = var.app_name
      Environment  = var.environment
      ManagedBy    = "Terraform"
      DeploymentId = "{config.deployment_id}"
    }}
  }}
}}

variable "aws_region" {{
  description = "AWS region"
  type        = string
  default     = "{config.region}"
}}
'''

    # ─────────────────────────────────────────────────────────────────────────

    @staticmethod
    def _tags(suffix: str) -> str:
        return f'''  tags = {{
    Name        = "${{var.app_name}}-{suffix}"
    Environment = var.environment
    ManagedBy   = "Terraform"
  }}'''

    def _tf_security_group(self, port: int) -> str:
        rules = list(BASE_INGRESS_PORTS)
        if port not in {p for p, _ in rules}:
            rules.append((port, "Application port"))

        ingress = "\n\n".join(
            f'''  ingress {{
    description = "{label}"
    from_port   = {p}
    to_port     = {p}
    protocol    = "tcp"
    cidr_blocks = ["0.0.0.0/0"]
  }}'''
            for p, label in rules
        )
        return f'''resource "aws_security_group" "app_sg" {{
  name_prefix = "${{var.app_name}}-sg-"
  description = "Security group for ${{var.app_name}}"
  vpc_id      = aws_vpc.app_vpc.id

{ingress}

  egress {{
    description = "All outbound traffic"
    from_port   = 0
    to_port     = 0
    protocol    = "-1"
    cidr_blocks = ["0.0.0.0/0"]
  }}

{self._tags("sg")}
}}'''

    def _tf_main(self, config: DeploymentConfig) -> str:
        return f'''# Application {config.app_name}: {config.strategy_type.value} strategy, single-instance compute path

resource "aws_vpc" "app_vpc" {{
  cidr_block           = var.vpc_cidr
  enable_dns_hostnames = true
  enable_dns_support   = true

{self._tags("vpc")}
}}

resource "aws_internet_gateway" "app_igw" {{
  vpc_id = aws_vpc.app_vpc.id

{self._tags("igw")}
}}

resource "aws_subnet" "app_subnet" {{
  vpc_id                  = aws_vpc.app_vpc.id
  cidr_block              = var.subnet_cidr
  availability_zone       = var.availability_zone
  map_public_ip_on_launch = true

{self._tags("subnet")}
}}

resource "aws_route_table" "app_rt" {{
  vpc_id = aws_vpc.app_vpc.id

  route {{
    cidr_block = "0.0.0.0/0"
    gateway_id = aws_internet_gateway.app_igw.id
  }}

{self._tags("rt")}
}}

resource "aws_route_table_association" "app_rta" {{
  subnet_id      = aws_subnet.app_subnet.id
  route_table_id = aws_route_table.app_rt.id
}}

{self._tf_security_group(config.port)}

resource "aws_instance" "app_instance" {{
  ami           = var.ami_id
  instance_type = var.instance_type

  vpc_security_group_ids = [aws_security_group.app_sg.id]
  subnet_id              = aws_subnet.app_subnet.id

  user_data                   = file("${{path.module}}/{BOOTSTRAP_FILE}")
  user_data_replace_on_change = true

  root_block_device {{
    volume_type = "gp3"
    volume_size = 20
    encrypted   = true
  }}

{self._tags("instance")}
}}

resource "aws_eip" "app_eip" {{
  instance = aws_instance.app_instance.id
  domain   = "vpc"

{self._tags("eip")}

  depends_on = [aws_internet_gateway.app_igw]
}}
'''

    # ─────────────────────────────────────────────────────────────────────────

    def _tf_variables(self, config: DeploymentConfig) -> str:
        subnet_cidr = config.networking.get("subnets", {}).get("public", ["10.0.1.0/24"])[0]
        vpc_cidr = config.networking.get("vpc", {}).get("cidr", "10.0.0.0/16")
        return f'''variable "ami_id" {{
  description = "AMI ID to use for the instance"
  type        = string
}}

variable "instance_type" {{
  description = "EC2 instance type"
  type        = string
  default     = "{config.instance_type}"
}}

variable "app_name" {{
  description = "Name of the application"
  type        = string
  default     = "{config.app_name}"
}}

variable "environment" {{
  description = "Environment name"
  type        = string
  default     = "{config.environment}"
}}

variable "vpc_cidr" {{
  description = "CIDR block for VPC"
  type        = string
  default     = "{vpc_cidr}"
}}

variable "subnet_cidr" {{
  description = "CIDR block for subnet"
  type        = string
  default     = "{subnet_cidr}"
}}

variable "availability_zone" {{
  description = "Availability zone for the subnet"
  type        = string
  default     = "{config.zone}"
}}
'''

    def _tf_outputs(self, port: int) -> str:
        return f'''output "instance_id" {{
  description = "ID of the EC2 instance"
  value       = aws_instance.app_instance.id
}}

output "instance_public_ip" {{
  description = "Public IP address of the EC2 instance"
  value       = aws_eip.app_eip.public_ip
}}

output "instance_public_dns" {{
  description = "Public DNS name of the EC2 instance"
  value       = aws_instance.app_instance.public_dns
}}

output "application_url" {{
  description = "URL to access the deployed application"
  value       = "http://${{aws_eip.app_eip.public_ip}}:{port}"
}}

output "vpc_id" {{
  description = "ID of the VPC"
  value       = aws_vpc.app_vpc.id
}}

output "subnet_id" {{
  description = "ID of the subnet"
  value       = aws_subnet.app_subnet.id
}}

output "security_group_id" {{
  description = "ID of the security group"
  value       = aws_security_group.app_sg.id
}}
'''
